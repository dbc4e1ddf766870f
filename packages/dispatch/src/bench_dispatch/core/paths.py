from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class RunLayout:
    """
    Canonical path layout for a single dispatcher run:

      {root}/{run_id}/events.jsonl
      {root}/{run_id}/run_report.json
      {root}/{run_id}/build.log
      {root}/{run_id}/runner.log
    """

    root: Path
    run_id: str

    def run_dir(self) -> Path:
        return self.root / self.run_id

    def events_jsonl(self) -> Path:
        return self.run_dir() / "events.jsonl"

    def report_json(self) -> Path:
        return self.run_dir() / "run_report.json"

    def build_log(self) -> Path:
        return self.run_dir() / "build.log"

    def runner_log(self) -> Path:
        return self.run_dir() / "runner.log"

    def ensure_dirs(self) -> None:
        self.run_dir().mkdir(parents=True, exist_ok=True)
