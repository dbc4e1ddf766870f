"""
Run deduplication.

Events that share a dedup key supersede each other: admitting a new run cancels
whichever run currently holds the key. Pull request events key off the PR
number so successive pushes to one PR collapse; branch pushes key off the
commit.
"""

from __future__ import annotations

import threading
from typing import MutableMapping

import structlog

from bench_dispatch.core import new_run_id
from bench_dispatch.models import ChangeEvent, JobRun, RunState
from bench_dispatch.workflow.models import WorkflowConfig

log = structlog.get_logger(__name__)


def dedup_key(workflow: WorkflowConfig, event: ChangeEvent) -> str:
    discriminator = (
        str(event.pr_number) if event.pr_number is not None else event.commit_sha
    )
    return f"{workflow.identity}-{discriminator}"


def new_run(workflow: WorkflowConfig, event: ChangeEvent) -> JobRun:
    return JobRun(id=new_run_id(), dedup_key=dedup_key(workflow, event), event=event)


def admit_or_supersede(run: JobRun, active: MutableMapping[str, JobRun]) -> JobRun:
    """
    Install `run` as the active run for its key, cancelling the previous holder.

    Not synchronized; callers sharing `active` across threads must hold a lock
    (see ConcurrencyController).
    """
    if run.state is not RunState.pending:
        raise ValueError(f"run {run.id} is {run.state.value}, expected Pending")

    previous = active.pop(run.dedup_key, None)
    if previous is not None and previous is not run:
        if previous.cancel():
            log.info(
                "run.superseded",
                dedup_key=run.dedup_key,
                cancelled_run=previous.id,
                new_run=run.id,
            )

    active[run.dedup_key] = run
    return run


class ConcurrencyController:
    """
    Owns the only shared mutable state of the dispatcher: the mapping of dedup
    key to the run currently holding it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, JobRun] = {}

    def admit(self, run: JobRun) -> JobRun:
        with self._lock:
            return admit_or_supersede(run, self._active)

    def release(self, run: JobRun) -> bool:
        """
        Free the run's key. A key already taken over by a newer run is left
        alone. Returns True if the key was freed.
        """
        with self._lock:
            if self._active.get(run.dedup_key) is run:
                del self._active[run.dedup_key]
                return True
            return False

    def get(self, key: str) -> JobRun | None:
        with self._lock:
            return self._active.get(key)

    def snapshot(self) -> dict[str, JobRun]:
        with self._lock:
            return dict(self._active)

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
