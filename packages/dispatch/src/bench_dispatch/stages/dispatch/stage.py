from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import SecretStr

from bench_dispatch.core import RunCancelled, RunFailed, RunTimeoutError, atomic_write_text
from bench_dispatch.models import RunState
from bench_dispatch.pipeline.context import RunContext
from bench_dispatch.pipeline.events import EventType

from .process import BenchRunner
from .runner import artifact_dir_of, run_benchmarks


@dataclass(slots=True)
class DispatchStage:
    runner: BenchRunner
    credentials: SecretStr | None = field(default=None, repr=False)
    stage_id: str = "dispatch"
    run_state: RunState = RunState.running
    source_stage: str = "normalize"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        if self.source_stage not in ctx.artifacts:
            raise ValueError(f"dispatch requires artifacts from stage '{self.source_stage}'")

        cfg = ctx.workflow.runner
        artifacts = ctx.artifacts[self.source_stage]
        log_path = ctx.layout.runner_log()

        ctx.emit(
            EventType.DISPATCH_START,
            stage=self.stage_id,
            artifact_dir=str(artifact_dir_of(artifacts)),
            command=list(cfg.command),
            timeout_s=cfg.timeout_s,
        )

        try:
            result = run_benchmarks(
                artifacts,
                self.credentials,
                cfg.timeout_s,
                runner=self.runner,
                cwd=ctx.workspace,
                run=ctx.run,
                kill_grace_s=cfg.kill_grace_s,
            )
        except RunTimeoutError as e:
            ctx.emit(EventType.DISPATCH_TIMEOUT, stage=self.stage_id, timeout_s=e.timeout_s)
            raise
        except RunCancelled:
            ctx.emit(EventType.DISPATCH_ABANDON, stage=self.stage_id)
            raise

        ctx.result = result
        atomic_write_text(log_path, result.payload)
        ctx.emit(
            EventType.DISPATCH_FINISH,
            stage=self.stage_id,
            state=result.state.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            log=str(log_path),
        )

        if result.state is RunState.failed:
            raise RunFailed(exit_code=result.exit_code, payload=result.payload)

        return {
            "exit_code": result.exit_code,
            "runner_log": str(log_path),
            "_metrics": {"runner_duration_ms": result.duration_ms},
        }
