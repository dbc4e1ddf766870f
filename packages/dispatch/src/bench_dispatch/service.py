"""
Event handling: admission, supersession, pipeline execution and slot release.

One Dispatcher serves one workflow in one workspace. Admission and supersession
are concurrent across threads through the ConcurrencyController; pipeline
execution is serialized on the workspace, since every run builds into and stages
from the same directories.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from pydantic import SecretStr

from bench_dispatch.concurrency import ConcurrencyController, dedup_key, new_run
from bench_dispatch.core import (
    BuildError,
    ILogger,
    NormalizeError,
    RunCancelled,
    RunFailed,
    RunLayout,
    RunTimeoutError,
    get_logger,
)
from bench_dispatch.models import ChangeEvent, JobRun, RunState
from bench_dispatch.pipeline import PipelineRunner, RunReport, Stage, StageResult
from bench_dispatch.stages import BuildStage, DispatchStage, NormalizeStage
from bench_dispatch.stages.build.toolchain import SubprocessToolchain, Toolchain
from bench_dispatch.stages.dispatch.process import BenchRunner, SubprocessBenchRunner
from bench_dispatch.trigger import admit
from bench_dispatch.workflow.models import WorkflowConfig


class Outcome(StrEnum):
    succeeded = "succeeded"
    not_admitted = "not_admitted"
    cancelled = "cancelled"
    build_error = "build_error"
    normalize_error = "normalize_error"
    timeout = "timeout"
    run_failed = "run_failed"
    internal_error = "internal_error"


EXIT_CODES: dict[Outcome, int] = {
    Outcome.succeeded: 0,
    Outcome.not_admitted: 0,
    Outcome.internal_error: 1,
    Outcome.build_error: 2,
    Outcome.normalize_error: 3,
    Outcome.timeout: 4,
    Outcome.run_failed: 5,
    Outcome.cancelled: 6,
}

WORKSPACE_POLL_S = 0.1

_QUIET_OUTCOMES = frozenset({Outcome.succeeded, Outcome.not_admitted, Outcome.cancelled})

_ERROR_OUTCOMES: tuple[tuple[type[BaseException], Outcome], ...] = (
    (RunCancelled, Outcome.cancelled),
    (BuildError, Outcome.build_error),
    (NormalizeError, Outcome.normalize_error),
    (RunTimeoutError, Outcome.timeout),
    (RunFailed, Outcome.run_failed),
)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    outcome: Outcome
    event: ChangeEvent
    dedup_key: str
    run_id: Optional[str] = None
    state: Optional[RunState] = None
    report_path: Optional[Path] = None
    detail: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.outcome]

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "dedup_key": self.dedup_key,
            "run_id": self.run_id,
            "state": self.state.value if self.state else None,
            "report_path": str(self.report_path) if self.report_path else None,
            "detail": self.detail,
            "event": self.event.to_dict(),
        }


def classify(run: JobRun, results: Sequence[StageResult]) -> tuple[Outcome, str | None]:
    if run.state is RunState.cancelled:
        return Outcome.cancelled, None
    if run.state is RunState.succeeded:
        return Outcome.succeeded, None

    failed = next((r for r in results if r.status != "success"), None)
    if failed is None or failed.exception is None:
        return Outcome.internal_error, "run failed without a stage error"

    exc = failed.exception
    for exc_type, outcome in _ERROR_OUTCOMES:
        if isinstance(exc, exc_type):
            return outcome, f"{failed.stage}: {exc}"
    return Outcome.internal_error, f"{failed.stage}: {type(exc).__name__}: {exc}"


class Dispatcher:
    def __init__(
        self,
        *,
        workflow: WorkflowConfig,
        workspace: Path,
        run_root: Path,
        toolchain: Toolchain | None = None,
        runner: BenchRunner | None = None,
        credentials: SecretStr | None = None,
        controller: ConcurrencyController | None = None,
        logger: ILogger | None = None,
    ) -> None:
        self.workflow = workflow
        self.workspace = Path(workspace).resolve()
        self.run_root = Path(run_root)
        self.toolchain: Toolchain = toolchain or SubprocessToolchain()
        self.runner: BenchRunner = runner or SubprocessBenchRunner(workflow.runner)
        self.credentials = credentials
        self.controller = controller or ConcurrencyController()
        self.logger: ILogger = logger or get_logger("bench_dispatch")
        self._workspace_lock = threading.Lock()

    def stages(self) -> list[Stage]:
        return [
            BuildStage(toolchain=self.toolchain),
            NormalizeStage(),
            DispatchStage(runner=self.runner, credentials=self.credentials),
        ]

    def submit(self, event: ChangeEvent) -> JobRun | None:
        """
        Admit `event` and install its run, superseding any older run with the
        same key. Returns None when the trigger rules reject the event.
        """
        if not admit(event, self.workflow.trigger):
            self.logger.info(
                "Event not admitted",
                kind=event.kind.value,
                ref=event.ref,
                commit_sha=event.commit_sha,
            )
            return None

        run = self.controller.admit(new_run(self.workflow, event))
        self.logger.info(
            "Run admitted",
            run_id=run.id,
            dedup_key=run.dedup_key,
            kind=event.kind.value,
        )
        return run

    def execute(self, run: JobRun, *, meta: dict[str, object] | None = None) -> RunOutcome:
        """
        Run the pipeline for an admitted run and free its dedup slot.

        Runs share one workspace (toolchain output and staging directory), so
        they execute one at a time. A run superseded while waiting skips the
        wait and stops at its first stage boundary. Errors outside the stages
        fail the run with an internal_error outcome.
        """
        pipeline = PipelineRunner(stages=self.stages(), logger=self.logger)
        try:
            with self._workspace_slot(run):
                report, results = pipeline.run(
                    run=run,
                    workflow=self.workflow,
                    workspace=self.workspace,
                    run_root=self.run_root,
                    meta=dict(meta or {}),
                )
        except Exception as e:
            run.finish(RunState.failed)
            self.logger.exception(
                "Run aborted", run_id=run.id, dedup_key=run.dedup_key, error=str(e)
            )
            return RunOutcome(
                outcome=Outcome.internal_error,
                event=run.event,
                dedup_key=run.dedup_key,
                run_id=run.id,
                state=run.state,
                detail=f"{type(e).__name__}: {e}",
            )
        finally:
            self.controller.release(run)

        outcome, detail = classify(run, results)
        return self._outcome(run, report, outcome, detail)

    @contextmanager
    def _workspace_slot(self, run: JobRun) -> Iterator[None]:
        while not self._workspace_lock.acquire(timeout=WORKSPACE_POLL_S):
            if run.cancel_requested.is_set():
                # Cancelled runs never reach a stage that touches the workspace.
                yield
                return
        try:
            yield
        finally:
            self._workspace_lock.release()

    def handle(self, event: ChangeEvent, *, meta: dict[str, object] | None = None) -> RunOutcome:
        run = self.submit(event)
        if run is None:
            return self.not_admitted(event)
        return self.execute(run, meta=meta)

    def handle_batch(
        self,
        events: Iterable[ChangeEvent],
        *,
        max_parallel: int = 4,
        meta: dict[str, object] | None = None,
    ) -> list[RunOutcome]:
        """
        Admit events in delivery order, then execute the admitted runs on a
        worker pool. Execution itself is serialized on the workspace; a run
        superseded by a later event in the same batch does not wait for it and
        stops at its first stage boundary. Outcomes are returned in delivery
        order.
        """
        if max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")

        submitted: list[tuple[ChangeEvent, JobRun | None]] = [
            (ev, self.submit(ev)) for ev in events
        ]

        with ThreadPoolExecutor(max_workers=max_parallel) as pool:
            futures = [
                pool.submit(self.execute, run, meta=meta) if run is not None else None
                for _, run in submitted
            ]
            return [
                f.result() if f is not None else self.not_admitted(ev)
                for (ev, _), f in zip(submitted, futures)
            ]

    def not_admitted(self, event: ChangeEvent) -> RunOutcome:
        return RunOutcome(
            outcome=Outcome.not_admitted,
            event=event,
            dedup_key=dedup_key(self.workflow, event),
        )

    def _outcome(
        self, run: JobRun, report: RunReport, outcome: Outcome, detail: str | None
    ) -> RunOutcome:
        log_fn = self.logger.info if outcome in _QUIET_OUTCOMES else self.logger.error
        log_fn(
            "Run outcome",
            run_id=run.id,
            dedup_key=run.dedup_key,
            outcome=outcome.value,
            state=report.state,
            detail=detail,
        )
        return RunOutcome(
            outcome=outcome,
            event=run.event,
            dedup_key=run.dedup_key,
            run_id=run.id,
            state=run.state,
            report_path=RunLayout(root=self.run_root, run_id=run.id).report_json(),
            detail=detail,
        )
