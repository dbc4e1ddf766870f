from __future__ import annotations

import subprocess  # nosec B404
from pathlib import Path

import structlog

from bench_dispatch.core import DispatchError

log = structlog.get_logger(__name__)

GIT_TIMEOUT_S = 30

# All-zero sha GitHub sends as `before` for a newly created branch.
NULL_SHA = "0" * 40


class GitDiffError(DispatchError):
    """Changed paths could not be computed"""


def changed_paths(base: str, head: str, *, cwd: Path) -> frozenset[str]:
    """
    Paths touched between `base` and `head` (`git diff --name-only base...head`).

    A null or empty base yields an empty set, which admission treats as "no
    diff available".
    """
    if not base or base == NULL_SHA:
        return frozenset()

    cmd = ["git", "diff", "--name-only", f"{base}...{head}"]
    try:
        result = subprocess.run(  # nosec B603 B607
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            timeout=GIT_TIMEOUT_S,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitDiffError(f"git diff timeout after {GIT_TIMEOUT_S}s") from exc
    except (FileNotFoundError, OSError) as exc:
        raise GitDiffError(f"git diff failed: {exc}") from exc

    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip() or "unknown error"
        raise GitDiffError(f"git diff error (exit {result.returncode}): {detail}")

    paths = frozenset(line.strip() for line in result.stdout.splitlines() if line.strip())
    log.debug("git.changed_paths", base=base, head=head, count=len(paths))
    return paths
