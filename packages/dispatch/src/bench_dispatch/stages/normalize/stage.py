from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from bench_dispatch.models import RunState
from bench_dispatch.pipeline.context import RunContext
from bench_dispatch.pipeline.events import EventType

from .runner import normalize


@dataclass(slots=True)
class NormalizeStage:
    stage_id: str = "normalize"
    run_state: RunState = RunState.staging
    source_stage: str = "build"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        if self.source_stage not in ctx.artifacts:
            raise ValueError(f"normalize requires artifacts from stage '{self.source_stage}'")

        cfg = ctx.workflow.normalize
        dest_dir = ctx.resolve(cfg.dest_dir)

        staged = normalize(
            ctx.artifacts[self.source_stage],
            dest_dir,
            metadata_suffixes=cfg.metadata_suffixes,
            selection=cfg.selection,
        )
        ctx.artifacts[self.stage_id] = staged

        for target, path in sorted(staged.items()):
            ctx.emit(
                EventType.NORMALIZE_SELECT,
                stage=self.stage_id,
                target=target,
                path=str(path),
            )

        refs = [
            ctx.record_artifact(stage=self.stage_id, target=t, path=p)
            for t, p in sorted(staged.items())
        ]

        return {
            "dest_dir": str(dest_dir),
            "targets": sorted(staged),
            "_artifacts": refs,
            "_metrics": {"targets": len(staged)},
        }
