"""Admission rules for incoming change events."""

from __future__ import annotations

import re
from fnmatch import fnmatchcase
from functools import lru_cache
from typing import Iterable, Optional

from bench_dispatch.models import ChangeEvent, EventKind
from bench_dispatch.workflow.models import TriggerRule

_BRANCH_PREFIX = "refs/heads/"


def glob_match(pattern: str, value: str) -> bool:
    """
    Path glob: fnmatch-style, `*` may cross `/`. A leading `**/` also matches
    zero directories, so `**/*.rs` accepts both `build.rs` and `src/lexer.rs`.
    """
    if fnmatchcase(value, pattern):
        return True
    return pattern.startswith("**/") and fnmatchcase(value, pattern[3:])


@lru_cache(maxsize=256)
def _ref_regex(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out))


def ref_glob_match(pattern: str, ref: str) -> bool:
    """Branch glob: `*` and `?` stop at `/`, `**` crosses it."""
    return _ref_regex(pattern).fullmatch(ref) is not None


def branch_name(ref: str) -> str:
    if ref.startswith(_BRANCH_PREFIX):
        return ref[len(_BRANCH_PREFIX) :]
    return ref


def matches_any(value: str, patterns: Iterable[str]) -> bool:
    return any(glob_match(p, value) for p in patterns)


def ref_matches(ref: str, patterns: Optional[tuple[str, ...]]) -> bool:
    # None: no branch filter configured. An empty tuple matches nothing.
    if patterns is None:
        return True
    name = branch_name(ref)
    return any(ref_glob_match(p, name) for p in patterns)


def paths_match(
    changed_paths: Iterable[str], patterns: Optional[tuple[str, ...]]
) -> bool:
    paths = list(changed_paths)
    # Re-runs carry no diff.
    if not paths or patterns is None:
        return True
    return any(matches_any(p, patterns) for p in paths)


def admit(event: ChangeEvent, rules: TriggerRule) -> bool:
    if event.kind is EventKind.manual:
        return True

    if event.kind not in rules.kinds:
        return False

    if event.kind is EventKind.push and not ref_matches(event.ref, rules.ref_patterns):
        return False

    return paths_match(event.changed_paths, rules.path_patterns)
