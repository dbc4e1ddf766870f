from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Mapping, Optional

from bench_dispatch.core import RunCancelled, utc_now

# Logical benchmark name -> path. Directory of raw build outputs after the build
# stage, staged file after normalization.
ArtifactSet = Mapping[str, Path]


class EventKind(StrEnum):
    manual = "manual"
    pull_request_opened = "pull_request_opened"
    pull_request_synchronized = "pull_request_synchronized"
    push = "push"

    @property
    def is_pull_request(self) -> bool:
        return self in (
            EventKind.pull_request_opened,
            EventKind.pull_request_synchronized,
        )


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    kind: EventKind
    ref: str
    commit_sha: str
    changed_paths: frozenset[str] = frozenset()
    pr_number: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "ref": self.ref,
            "commit_sha": self.commit_sha,
            "changed_paths": sorted(self.changed_paths),
            "pr_number": self.pr_number,
        }


class RunState(StrEnum):
    pending = "Pending"
    cancelled = "Cancelled"
    building = "Building"
    staging = "Staging"
    running = "Running"
    succeeded = "Succeeded"
    failed = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.cancelled, RunState.succeeded, RunState.failed})

_NEXT: dict[RunState, frozenset[RunState]] = {
    RunState.pending: frozenset({RunState.building}),
    RunState.building: frozenset({RunState.staging}),
    RunState.staging: frozenset({RunState.running}),
    RunState.running: frozenset(),
}


@dataclass(eq=False, slots=True)
class JobRun:
    """
    One admitted pipeline execution.

    All state changes take the run's own lock, so a cancellation issued by the
    concurrency controller and a stage transition on the worker thread never
    interleave. Advancing a cancelled run raises RunCancelled; that is the
    stage-boundary check.
    """

    id: str
    dedup_key: str
    event: ChangeEvent
    state: RunState = RunState.pending
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _cancel: threading.Event = field(
        default_factory=threading.Event, init=False, repr=False
    )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def cancel_requested(self) -> threading.Event:
        return self._cancel

    def advance(self, state: RunState) -> None:
        with self._lock:
            if self.state is RunState.cancelled:
                raise RunCancelled(run_id=self.id, dedup_key=self.dedup_key)
            if state not in _NEXT.get(self.state, frozenset()):
                raise ValueError(
                    f"illegal run transition {self.state.value} -> {state.value}"
                )
            self.state = state

    def cancel(self) -> bool:
        """Mark the run cancelled. Returns False if it had already finished."""
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = RunState.cancelled
            self.finished_at = utc_now()
            self._cancel.set()
            return True

    def finish(self, state: RunState) -> bool:
        """
        Move the run to Succeeded or Failed. A run cancelled in the meantime
        keeps its Cancelled state and False is returned.
        """
        if state not in (RunState.succeeded, RunState.failed):
            raise ValueError(f"not a finishing state: {state.value}")
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = state
            self.finished_at = utc_now()
            return True

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "dedup_key": self.dedup_key,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "event": self.event.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class RunResult:
    state: RunState
    exit_code: int
    payload: str
    duration_ms: int

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "exit_code": self.exit_code,
            "payload": self.payload,
            "duration_ms": self.duration_ms,
        }
