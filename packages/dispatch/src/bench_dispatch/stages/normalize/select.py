"""
Locating build outputs by target name.

Build systems append a disambiguation suffix to each output (`lexer-3f2a9c...`),
so a target's output is any file named `<target>-<suffix>`. Dependency-tracking
sidecars such as `lexer-3f2a9c.d` share the prefix and are excluded by suffix.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from bench_dispatch.core import NormalizeError
from bench_dispatch.workflow.models import SelectionPolicy


def is_metadata(path: Path, metadata_suffixes: Sequence[str]) -> bool:
    return any(path.name.endswith(s) for s in metadata_suffixes)


def candidates_for(
    source: Path, target: str, metadata_suffixes: Sequence[str]
) -> list[Path]:
    """
    Build outputs for `target` in `source`, sorted by name.

    `source` may also point straight at a file, which is then the only candidate.
    """
    source = Path(source)
    if source.is_file():
        return [source]
    if not source.is_dir():
        return []

    prefix = f"{target}-"
    out = [
        p
        for p in source.iterdir()
        if p.is_file()
        and p.name.startswith(prefix)
        and len(p.name) > len(prefix)
        and not is_metadata(p, metadata_suffixes)
    ]
    return sorted(out, key=lambda p: p.name)


def select_candidate(
    target: str, candidates: Sequence[Path], policy: SelectionPolicy
) -> Path:
    """
    Pick exactly one build output for `target`.

    unique: more than one candidate is an error.
    newest: latest mtime wins; equal mtimes fall back to the greatest file name.
    """
    if not candidates:
        raise NormalizeError(target=target, reason=f"no build output matching '{target}-*'")

    if len(candidates) == 1:
        return candidates[0]

    if policy == "unique":
        names = ", ".join(p.name for p in candidates)
        raise NormalizeError(
            target=target,
            reason=f"{len(candidates)} build outputs match, expected exactly one: {names}",
        )

    return max(candidates, key=lambda p: (p.stat().st_mtime_ns, p.name))
