from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bench_dispatch.core import BuildError, atomic_write_text
from bench_dispatch.models import RunState
from bench_dispatch.pipeline.context import RunContext
from bench_dispatch.pipeline.events import EventType

from .runner import build
from .toolchain import SubprocessToolchain, Toolchain


@dataclass(slots=True)
class BuildStage:
    toolchain: Toolchain = field(default_factory=SubprocessToolchain)
    stage_id: str = "build"
    run_state: RunState = RunState.building

    def run(self, ctx: RunContext) -> dict[str, Any]:
        wf = ctx.workflow
        log_path = ctx.layout.build_log()

        ctx.emit(
            EventType.BUILD_START,
            stage=self.stage_id,
            targets=list(wf.targets),
            command=list(wf.build.command),
            env_keys=sorted(wf.build.env),
        )

        try:
            artifacts, res = build(
                ctx.run,
                wf.build,
                targets=wf.targets,
                toolchain=self.toolchain,
                workspace=ctx.workspace,
                metadata_suffixes=wf.normalize.metadata_suffixes,
            )
        except BuildError as e:
            atomic_write_text(log_path, e.captured_output)
            ctx.emit(
                EventType.BUILD_FINISH,
                stage=self.stage_id,
                exit_code=e.exit_code,
                missing_targets=list(e.missing_targets),
                log=str(log_path),
            )
            raise

        atomic_write_text(log_path, res.output)
        ctx.artifacts[self.stage_id] = artifacts
        ctx.emit(
            EventType.BUILD_FINISH,
            stage=self.stage_id,
            exit_code=res.exit_code,
            output_dir=str(res.output_dir),
            log=str(log_path),
        )

        return {
            "output_dir": str(res.output_dir),
            "build_log": str(log_path),
            "targets": list(wf.targets),
            "_metrics": {"targets": len(artifacts)},
        }
