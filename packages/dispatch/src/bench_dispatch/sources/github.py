"""
Change events from a GitHub Actions job.

Maps `GITHUB_EVENT_NAME` plus the webhook payload at `GITHUB_EVENT_PATH` to a
ChangeEvent. Pull request actions other than `opened` and `synchronize` do not
map to an event kind and yield None.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Mapping

from bench_dispatch.core import ConfigError, read_json
from bench_dispatch.models import ChangeEvent, EventKind

from .git import NULL_SHA, changed_paths

_PR_ACTIONS: dict[str, EventKind] = {
    "opened": EventKind.pull_request_opened,
    "synchronize": EventKind.pull_request_synchronized,
}

DiffFn = Callable[[str, str], frozenset[str]]


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not set; not running inside GitHub Actions?")
    return value


def event_from_payload(
    event_name: str,
    payload: Mapping[str, Any],
    *,
    ref: str,
    sha: str,
    diff: DiffFn | None = None,
) -> ChangeEvent | None:
    if event_name == "workflow_dispatch":
        return ChangeEvent(kind=EventKind.manual, ref=ref, commit_sha=sha)

    if event_name == "pull_request":
        kind = _PR_ACTIONS.get(str(payload.get("action", "")))
        if kind is None:
            return None
        pr = payload.get("pull_request") or {}
        head = pr.get("head") or {}
        base = pr.get("base") or {}
        number = payload.get("number") or pr.get("number")
        if number is None:
            raise ConfigError("pull_request payload carries no PR number")
        head_sha = str(head.get("sha") or sha)
        base_sha = str(base.get("sha") or "")
        # PR payloads list no files.
        if diff is None:
            raise ConfigError("pull_request events need a diff source for changed paths")
        if not base_sha or base_sha == NULL_SHA:
            raise ConfigError("pull_request payload carries no base sha")
        paths = diff(base_sha, head_sha)
        return ChangeEvent(
            kind=kind,
            ref=str(head.get("ref") or ref),
            commit_sha=head_sha,
            changed_paths=paths,
            pr_number=int(number),
        )

    if event_name == "push":
        after = str(payload.get("after") or sha)
        before = str(payload.get("before") or NULL_SHA)
        if diff is not None:
            paths = diff(before, after)
        else:
            paths = frozenset(
                p
                for c in payload.get("commits") or []
                for key in ("added", "modified", "removed")
                for p in c.get(key) or []
            )
        return ChangeEvent(
            kind=EventKind.push,
            ref=str(payload.get("ref") or ref),
            commit_sha=after,
            changed_paths=paths,
        )

    return None


def event_from_actions_env(
    env: Mapping[str, str] | None = None,
    *,
    workspace: Path | None = None,
    use_git_diff: bool | None = None,
) -> ChangeEvent | None:
    """
    Build the event for the running GitHub Actions job.

    `use_git_diff=None` diffs pull requests only; pushes then take their paths
    from the payload's commit list. The base commit must be present in the
    checkout (`fetch-depth: 0`), or GitDiffError is raised.
    """
    env = os.environ if env is None else env
    event_name = _require(env, "GITHUB_EVENT_NAME")
    ref = _require(env, "GITHUB_REF")
    sha = _require(env, "GITHUB_SHA")

    payload: Mapping[str, Any] = {}
    event_path = env.get("GITHUB_EVENT_PATH")
    if event_path:
        try:
            payload = read_json(Path(event_path))
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to read GITHUB_EVENT_PATH: {event_path}") from e

    diff: DiffFn | None = None
    if use_git_diff or (use_git_diff is None and event_name == "pull_request"):
        cwd = workspace or Path(env.get("GITHUB_WORKSPACE") or ".")
        diff = lambda base, head: changed_paths(base, head, cwd=cwd)  # noqa: E731

    return event_from_payload(event_name, payload, ref=ref, sha=sha, diff=diff)
