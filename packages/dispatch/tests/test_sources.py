from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from bench_dispatch.core import ConfigError
from bench_dispatch.models import EventKind
from bench_dispatch.sources import (
    GitDiffError,
    changed_paths,
    event_from_actions_env,
    event_from_payload,
    iter_events_jsonl,
    parse_event,
    read_event_json,
)
from bench_dispatch.sources.git import NULL_SHA
from bench_dispatch.trigger import admit
from bench_dispatch.workflow import WorkflowConfig


def test_workflow_dispatch_maps_to_manual() -> None:
    ev = event_from_payload("workflow_dispatch", {}, ref="refs/heads/main", sha="abc")
    assert ev is not None
    assert ev.kind is EventKind.manual
    assert ev.changed_paths == frozenset()


def test_pull_request_actions() -> None:
    payload = {
        "action": "synchronize",
        "number": 42,
        "pull_request": {
            "head": {"ref": "feat", "sha": "h1"},
            "base": {"sha": "b1"},
        },
    }
    seen: list[tuple[str, str]] = []

    def diff(base: str, head: str) -> frozenset[str]:
        seen.append((base, head))
        return frozenset({"crates/a/src/lib.rs"})

    ev = event_from_payload("pull_request", payload, ref="refs/pull/42/merge", sha="m1", diff=diff)
    assert ev is not None
    assert ev.kind is EventKind.pull_request_synchronized
    assert ev.pr_number == 42
    assert ev.ref == "feat" and ev.commit_sha == "h1"
    assert ev.changed_paths == frozenset({"crates/a/src/lib.rs"})
    assert seen == [("b1", "h1")]

    closed = {**payload, "action": "closed"}
    assert event_from_payload("pull_request", closed, ref="r", sha="s") is None


def test_pull_request_without_number_is_config_error() -> None:
    with pytest.raises(ConfigError):
        event_from_payload("pull_request", {"action": "opened"}, ref="r", sha="s")


def test_push_collects_paths_from_commits() -> None:
    payload = {
        "ref": "refs/heads/main",
        "before": "b0",
        "after": "a1",
        "commits": [
            {"added": ["src/new.rs"], "modified": ["Cargo.lock"], "removed": []},
            {"added": [], "modified": [], "removed": ["old.rs"]},
        ],
    }
    ev = event_from_payload("push", payload, ref="refs/heads/main", sha="a1")
    assert ev is not None
    assert ev.kind is EventKind.push
    assert ev.commit_sha == "a1"
    assert ev.changed_paths == frozenset({"src/new.rs", "Cargo.lock", "old.rs"})


def test_unknown_event_name_yields_none() -> None:
    assert event_from_payload("release", {}, ref="r", sha="s") is None


def test_actions_env_reads_payload_file(tmp_path: Path) -> None:
    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps({"inputs": {}}))
    env = {
        "GITHUB_EVENT_NAME": "workflow_dispatch",
        "GITHUB_REF": "refs/heads/main",
        "GITHUB_SHA": "abc",
        "GITHUB_EVENT_PATH": str(event_path),
    }
    ev = event_from_actions_env(env)
    assert ev is not None
    assert ev.kind is EventKind.manual
    assert ev.commit_sha == "abc"

    with pytest.raises(ConfigError):
        event_from_actions_env({"GITHUB_EVENT_NAME": "push"})


def test_pull_request_without_diff_source_is_config_error(tmp_path: Path) -> None:
    payload = {
        "action": "opened",
        "number": 7,
        "pull_request": {"head": {"ref": "f", "sha": "h1"}, "base": {"sha": "b1"}},
    }
    with pytest.raises(ConfigError, match="diff source"):
        event_from_payload("pull_request", payload, ref="refs/pull/7/merge", sha="m1")

    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps(payload))
    env = {
        "GITHUB_EVENT_NAME": "pull_request",
        "GITHUB_REF": "refs/pull/7/merge",
        "GITHUB_SHA": "m1",
        "GITHUB_EVENT_PATH": str(event_path),
    }
    with pytest.raises(ConfigError, match="diff source"):
        event_from_actions_env(env, use_git_diff=False)


def test_pull_request_without_base_sha_is_config_error() -> None:
    payload = {"action": "opened", "number": 7, "pull_request": {"head": {"sha": "h1"}}}
    with pytest.raises(ConfigError, match="base sha"):
        event_from_payload(
            "pull_request", payload, ref="r", sha="s", diff=lambda b, h: frozenset()
        )


def _git(cwd: Path, *args: str) -> str:
    out = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return out.stdout.strip()


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_docs_only_pull_request_is_diffed_and_rejected(
    tmp_path: Path, workflow: WorkflowConfig
) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "config", "user.email", "ci@example.com")
    _git(repo, "config", "user.name", "ci")
    _git(repo, "config", "commit.gpgsign", "false")
    (repo / "lib.rs").write_text("fn main() {}\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "base")
    base = _git(repo, "rev-parse", "HEAD")
    (repo / "README.md").write_text("docs\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "docs")
    head = _git(repo, "rev-parse", "HEAD")

    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps(
            {
                "action": "synchronize",
                "number": 3,
                "pull_request": {"head": {"ref": "docs", "sha": head}, "base": {"sha": base}},
            }
        )
    )
    env = {
        "GITHUB_EVENT_NAME": "pull_request",
        "GITHUB_REF": "refs/pull/3/merge",
        "GITHUB_SHA": head,
        "GITHUB_EVENT_PATH": str(event_path),
        "GITHUB_WORKSPACE": str(repo),
    }
    ev = event_from_actions_env(env)
    assert ev is not None
    assert ev.changed_paths == frozenset({"README.md"})
    assert not admit(ev, workflow.trigger)


def test_event_files(tmp_path: Path) -> None:
    single = tmp_path / "event.json"
    single.write_text(
        json.dumps({"kind": "push", "ref": "main", "commit_sha": "abc", "changed_paths": ["a.rs"]})
    )
    ev = read_event_json(single)
    assert ev.kind is EventKind.push and ev.changed_paths == frozenset({"a.rs"})

    jsonl = tmp_path / "events.jsonl"
    jsonl.write_text(
        "# replayed deliveries\n"
        '{"kind": "pull_request_opened", "ref": "f", "commit_sha": "1", "pr_number": 5}\n'
        "\n"
        '{"kind": "pull_request_synchronized", "ref": "f", "commit_sha": "2", "pr_number": 5}\n'
    )
    events = list(iter_events_jsonl(jsonl))
    assert [e.commit_sha for e in events] == ["1", "2"]


@pytest.mark.parametrize(
    "raw",
    [
        {"kind": "tag", "ref": "main", "commit_sha": "abc"},
        {"kind": "push", "ref": "", "commit_sha": "abc"},
        {"kind": "push", "ref": "main", "commit_sha": "abc", "extra": 1},
        {"kind": "pull_request_opened", "ref": "f", "commit_sha": "1", "pr_number": 0},
    ],
)
def test_invalid_events_raise_config_error(raw: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        parse_event(raw)


def test_jsonl_reports_line_of_bad_json(tmp_path: Path) -> None:
    jsonl = tmp_path / "events.jsonl"
    jsonl.write_text('{"kind": "manual", "ref": "main", "commit_sha": "a"}\n{oops\n')
    with pytest.raises(ConfigError, match=":2:"):
        list(iter_events_jsonl(jsonl))


def test_changed_paths_without_base_is_empty(tmp_path: Path) -> None:
    assert changed_paths(NULL_SHA, "abc", cwd=tmp_path) == frozenset()
    assert changed_paths("", "abc", cwd=tmp_path) == frozenset()


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_changed_paths_outside_repo_raises(tmp_path: Path) -> None:
    with pytest.raises(GitDiffError):
        changed_paths("abc", "def", cwd=tmp_path)
