from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from bench_dispatch.core import atomic_write_json

from .stage import StageResult


@dataclass(slots=True)
class RunReport:
    run_id: str
    dedup_key: str
    state: str  # final RunState value
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    event: dict[str, Any] = field(default_factory=dict)
    stages: list[StageResult] = field(default_factory=list)
    result: Optional[dict[str, Any]] = None
    events_jsonl: Optional[str] = None
    provenance: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dedup_key": self.dedup_key,
            "state": self.state,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "event": self.event,
            "stages": [s.to_dict() for s in self.stages],
            "result": self.result,
            "events_jsonl": self.events_jsonl,
            "provenance": self.provenance,
            "meta": self.meta,
        }

    def write_json(self, path: Path) -> None:
        atomic_write_json(Path(path), self.to_dict())
