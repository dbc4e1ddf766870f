from __future__ import annotations

from pathlib import Path
from typing import Sequence

import structlog

from bench_dispatch.core import BuildError
from bench_dispatch.models import ArtifactSet, JobRun
from bench_dispatch.stages.normalize.select import candidates_for
from bench_dispatch.workflow.models import BuildProfile

from .toolchain import Toolchain, ToolchainResult

log = structlog.get_logger(__name__)


def build(
    run: JobRun,
    profile: BuildProfile,
    *,
    targets: Sequence[str],
    toolchain: Toolchain,
    workspace: Path,
    metadata_suffixes: Sequence[str] = (".d",),
) -> tuple[ArtifactSet, ToolchainResult]:
    """
    Build every target and map each one to the directory holding its output.

    Raises BuildError on a non-zero toolchain exit, or when any target left no
    `<target>-*` output behind. Not retried.
    """
    if not targets:
        raise ValueError("build requires at least one target")

    res = toolchain.build(targets, profile, cwd=workspace)
    log.info(
        "build.finished",
        run_id=run.id,
        exit_code=res.exit_code,
        output_dir=str(res.output_dir),
    )

    if res.exit_code != 0:
        raise BuildError(exit_code=res.exit_code, captured_output=res.output)

    missing = tuple(
        t for t in targets if not candidates_for(res.output_dir, t, metadata_suffixes)
    )
    if missing:
        raise BuildError(
            exit_code=res.exit_code,
            captured_output=res.output,
            missing_targets=missing,
        )

    return {t: res.output_dir for t in targets}, res
