from __future__ import annotations

from pathlib import Path
from typing import Sequence

import structlog

from bench_dispatch.core import atomic_copy, safe_unlink
from bench_dispatch.models import ArtifactSet
from bench_dispatch.workflow.models import SelectionPolicy

from .select import candidates_for, is_metadata, select_candidate

log = structlog.get_logger(__name__)


def prune_metadata(dest_dir: Path, metadata_suffixes: Sequence[str]) -> list[Path]:
    """Delete build metadata files the runner does not need. Returns what was removed."""
    removed: list[Path] = []
    if not dest_dir.is_dir():
        return removed
    for p in sorted(dest_dir.iterdir()):
        if p.is_file() and is_metadata(p, metadata_suffixes):
            safe_unlink(p)
            removed.append(p)
    return removed


def normalize(
    artifacts: ArtifactSet,
    dest_dir: Path,
    *,
    metadata_suffixes: Sequence[str] = (".d",),
    selection: SelectionPolicy = "unique",
) -> ArtifactSet:
    """
    Stage one build output per target as `dest_dir/<target>`.

    Every target is resolved before anything is copied, so a naming violation
    leaves `dest_dir` untouched. Sources are copied rather than moved: running
    twice over the same inputs yields the same file set.
    """
    dest_dir = Path(dest_dir)

    selected: dict[str, Path] = {}
    for target in sorted(artifacts):
        cands = candidates_for(Path(artifacts[target]), target, metadata_suffixes)
        selected[target] = select_candidate(target, cands, selection)
        log.debug(
            "normalize.select",
            target=target,
            candidates=len(cands),
            selected=selected[target].name,
        )

    dest_dir.mkdir(parents=True, exist_ok=True)

    staged: dict[str, Path] = {}
    for target, src in selected.items():
        dst = dest_dir / target
        atomic_copy(src, dst)
        staged[target] = dst

    removed = prune_metadata(dest_dir, metadata_suffixes)
    if removed:
        log.debug("normalize.prune", removed=[p.name for p in removed])
    return staged
