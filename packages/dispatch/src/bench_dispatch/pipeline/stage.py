from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Protocol

from bench_dispatch.core import (
    RunCancelled,
    StageError,
    format_duration_ms,
    monotonic_ms,
    stage_error_from_exc,
    utc_now_iso,
)
from bench_dispatch.models import RunState

from .context import RunContext
from .events import EventType
from .types import ArtifactRef

StageStatus = Literal["success", "failed", "cancelled"]


@dataclass(slots=True)
class StageResult:
    stage: str
    status: StageStatus
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    outputs: dict[str, Any] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    artifacts: list[ArtifactRef] = field(default_factory=list)
    error: Optional[StageError] = None

    # Live exception for outcome classification; not serialized.
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "outputs": self.outputs,
            "metrics": self.metrics,
            "warnings": self.warnings,
            "artifacts": [
                {"target": a.target, "path": a.path, "bytes": a.bytes, "sha256": a.sha256}
                for a in self.artifacts
            ],
            "error": (
                {
                    "exc_type": self.error.exc_type,
                    "message": self.error.message,
                    "traceback": self.error.traceback,
                }
                if self.error
                else None
            ),
        }


class Stage(Protocol):
    stage_id: str
    # State the run enters when this stage starts.
    run_state: RunState

    def run(self, ctx: RunContext) -> dict[str, Any] | None: ...


def _split_reserved(
    out: dict[str, Any],
) -> tuple[list[str], dict[str, Any], list[ArtifactRef]]:
    warnings: list[str] = []
    metrics: dict[str, Any] = {}
    artifacts: list[ArtifactRef] = []

    if "_warnings" in out:
        w = out.pop("_warnings")
        if isinstance(w, list):
            warnings.extend(str(x) for x in w)

    if "_metrics" in out:
        m = out.pop("_metrics")
        if isinstance(m, dict):
            metrics.update(m)

    if "_artifacts" in out:
        a = out.pop("_artifacts")
        if isinstance(a, list):
            artifacts.extend(a)

    return warnings, metrics, artifacts


def run_stage(
    *,
    ctx: RunContext,
    stage: Stage,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    stage_id = stage.stage_id
    log = ctx.stage_logger(stage_id)

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None

    try:
        # Stage boundary: a superseded run stops here.
        ctx.run.advance(stage.run_state)

        ctx.emit(EventType.STAGE_START, stage=stage_id)
        log.info("Stage starting", position=position, started_at=started_at)

        out = stage.run(ctx) or {}
        if not isinstance(out, dict):
            raise TypeError(
                f"Stage {stage_id} returned {type(out).__name__}, expected dict or None"
            )

        warnings, metrics, artifacts = _split_reserved(out)

        for w in warnings:
            ctx.emit(EventType.STAGE_WARN, stage=stage_id, message=w)
            log.warning(w)

        if metrics:
            ctx.emit(EventType.STAGE_METRICS, stage=stage_id, metrics=metrics)

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        ctx.emit(EventType.STAGE_SUCCESS, stage=stage_id, duration_ms=duration)
        log_fields: dict[str, object] = {
            "status": "success",
            "position": position,
            "duration_ms": duration,
            "duration": format_duration_ms(duration),
            "warnings": len(warnings),
            "metrics": len(metrics),
            "outputs": sorted(out.keys()) if out else [],
        }
        if artifacts:
            log_fields["artifacts"] = len(artifacts)

        log.info("Stage succeeded", **log_fields)

        return StageResult(
            stage=stage_id,
            status="success",
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            outputs=out,
            metrics=metrics,
            warnings=warnings,
            artifacts=artifacts,
        )

    except RunCancelled as e:
        duration = monotonic_ms() - t0
        ctx.emit(EventType.STAGE_CANCELLED, stage=stage_id, duration_ms=duration)
        log.info("Stage cancelled", position=position, reason=str(e))

        return StageResult(
            stage=stage_id,
            status="cancelled",
            started_at_utc=started_at,
            finished_at_utc=utc_now_iso(),
            duration_ms=duration,
            exception=e,
        )

    except Exception as e:
        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage_id,
            duration_ms=duration,
            exc_type=type(e).__name__,
            message=str(e),
        )
        log.error(
            "Stage failed",
            status="failed",
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            error=str(e),
        )
        log.debug("Stage exception", exc_info=True)

        return StageResult(
            stage=stage_id,
            status="failed",
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            error=stage_error_from_exc(e),
            exception=e,
        )
