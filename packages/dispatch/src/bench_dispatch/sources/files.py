from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bench_dispatch.core import ConfigError, iter_jsonl, read_json
from bench_dispatch.models import ChangeEvent, EventKind


class ChangeEventIn(BaseModel):
    """Wire form of a change event as delivered in JSON / JSONL files."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: EventKind
    ref: str = Field(..., min_length=1)
    commit_sha: str = Field(..., min_length=1)
    changed_paths: list[str] = Field(default_factory=list)
    pr_number: Optional[int] = Field(default=None, ge=1)

    def to_event(self) -> ChangeEvent:
        return ChangeEvent(
            kind=self.kind,
            ref=self.ref,
            commit_sha=self.commit_sha,
            changed_paths=frozenset(self.changed_paths),
            pr_number=self.pr_number,
        )


def parse_event(raw: Any, *, source: str = "<memory>") -> ChangeEvent:
    try:
        return ChangeEventIn.model_validate(raw).to_event()
    except ValidationError as e:
        raise ConfigError(f"{source}: invalid change event: {e}") from e


def read_event_json(path: Path) -> ChangeEvent:
    try:
        raw = read_json(Path(path))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to read change event: {path}") from e
    return parse_event(raw, source=str(path))


def iter_events_jsonl(path: Path) -> Iterator[ChangeEvent]:
    """
    Yield events in file order. Delivery order is cancellation order, so the
    file must list events for one PR or ref oldest first.
    """
    try:
        rows = list(iter_jsonl(Path(path), comments=True))
    except (OSError, ValueError) as e:
        raise ConfigError(str(e)) from e
    for lineno, raw in rows:
        yield parse_event(raw, source=f"{path}:{lineno}")
