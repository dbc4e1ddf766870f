from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from bench_dispatch.core import (
    ILogger,
    RunLayout,
    RunProvenance,
    configure_logging,
    format_duration_ms,
    get_logger,
    monotonic_ms,
    utc_now_iso,
)
from bench_dispatch.models import JobRun, RunState
from bench_dispatch.workflow.models import WorkflowConfig

from .context import RunContext
from .events import EventSink, EventType, make_event
from .report import RunReport
from .stage import Stage, StageResult, run_stage


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("pipeline")


class PipelineRunner:
    """
    Runs the stages of one JobRun in order. Every non-success stage aborts the
    remaining stages.
    """

    def __init__(
        self,
        *,
        stages: Sequence[Stage],
        logger: ILogger | None = None,
    ) -> None:
        self.stages = list(stages)
        self.logger: ILogger = logger or default_logger()

        ids = [s.stage_id for s in self.stages]
        if len(ids) != len(set(ids)):
            dupes = sorted({x for x in ids if ids.count(x) > 1})
            raise ValueError(f"Duplicate stage_id(s): {dupes}")

    def run(
        self,
        *,
        run: JobRun,
        workflow: WorkflowConfig,
        workspace: Path,
        run_root: Path,
        meta: dict[str, Any] | None = None,
    ) -> tuple[RunReport, list[StageResult]]:
        """
        Execute the pipeline and write:
          - events.jsonl
          - run_report.json

        Returns: (report, stage_results)
        """
        meta = meta or {}
        layout = RunLayout(root=Path(run_root), run_id=run.id)
        layout.ensure_dirs()

        events_path = layout.events_jsonl()
        sink = EventSink(events_path, run_id=run.id)
        log = self.logger.bind(run_id=run.id, dedup_key=run.dedup_key)

        ctx = RunContext(
            run=run,
            workflow=workflow,
            workspace=Path(workspace).resolve(),
            layout=layout,
            logger=log,
            events=sink,
            meta=meta,
        )

        started_at = utc_now_iso()
        t0 = monotonic_ms()

        log.info(
            "Pipeline starting",
            stages=[s.stage_id for s in self.stages],
            workspace=str(ctx.workspace),
            run_dir=str(layout.run_dir()),
            event_kind=run.event.kind.value,
        )
        ctx.emit(EventType.RUN_START, change=run.event.to_dict(), **meta)

        results: list[StageResult] = []
        total = len(self.stages)
        for idx, st in enumerate(self.stages, start=1):
            res = run_stage(ctx=ctx, stage=st, index=idx, total=total)
            results.append(res)

            if res.status != "success":
                log.info("Aborting remaining stages", stage=st.stage_id, status=res.status)
                break

        if results and all(r.status == "success" for r in results):
            run.finish(RunState.succeeded)
        elif not any(r.status == "cancelled" for r in results):
            run.finish(RunState.failed)

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        report = RunReport(
            run_id=run.id,
            dedup_key=run.dedup_key,
            state=run.state.value,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            event=run.event.to_dict(),
            stages=results,
            result=ctx.result.to_dict() if ctx.result else None,
            events_jsonl=str(events_path),
            provenance=RunProvenance().to_dict(),
            meta=meta,
        )

        report_json = layout.report_json()
        report.write_json(report_json)

        sink.emit(
            make_event(
                event_type=EventType.RUN_FINISH,
                run_id=run.id,
                stage=None,
                state=report.state,
                duration_ms=duration,
                report_json=str(report_json),
            )
        )

        log.info(
            "Run complete",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
            events=str(events_path),
            state=report.state,
        )

        return report, results
