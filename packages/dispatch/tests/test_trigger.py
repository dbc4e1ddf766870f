from __future__ import annotations

from typing import Any, Callable

import pytest

from bench_dispatch.models import ChangeEvent, EventKind
from bench_dispatch.core import ConfigError
from bench_dispatch.trigger import (
    admit,
    branch_name,
    glob_match,
    paths_match,
    ref_glob_match,
    ref_matches,
)
from bench_dispatch.workflow import WorkflowConfig, parse_workflow

from conftest import workflow_dict


def _push(ref: str, *paths: str) -> ChangeEvent:
    return ChangeEvent(
        kind=EventKind.push, ref=ref, commit_sha="c0ffee", changed_paths=frozenset(paths)
    )


@pytest.mark.parametrize(
    ("pattern", "value", "expected"),
    [
        ("*.rs", "src/lexer.rs", True),
        ("**/*.rs", "build.rs", True),
        ("**/*.rs", "crates/oxc_parser/src/lib.rs", True),
        ("Cargo.lock", "Cargo.lock", True),
        ("Cargo.lock", "crates/x/Cargo.lock", False),
        ("bench-*", "bench-lexer", True),
        ("*.rs", "README.md", False),
    ],
)
def test_glob_match(pattern: str, value: str, expected: bool) -> None:
    assert glob_match(pattern, value) is expected


def test_branch_name_strips_heads_prefix() -> None:
    assert branch_name("refs/heads/main") == "main"
    assert branch_name("main") == "main"
    assert branch_name("refs/tags/v1") == "refs/tags/v1"


def test_push_requires_ref_and_path_match(workflow: WorkflowConfig) -> None:
    rules = workflow.trigger
    assert admit(_push("main", "src/lexer.rs"), rules)
    assert admit(_push("refs/heads/bench-parser", "Cargo.lock"), rules)

    assert not admit(_push("feature-x", "src/lexer.rs"), rules)
    assert not admit(_push("main", "docs/readme.md"), rules)


def test_empty_changed_paths_are_admitted(workflow: WorkflowConfig) -> None:
    assert admit(_push("main"), workflow.trigger)
    assert paths_match([], ("*.rs",))


def test_omitted_filter_passes_but_empty_pattern_list_matches_nothing() -> None:
    assert paths_match(["docs/x.md"], None)
    assert not paths_match(["docs/x.md"], ())
    assert ref_matches("feature-x", None)
    assert not ref_matches("feature-x", ())


@pytest.mark.parametrize("field", ["ref_patterns", "path_patterns"])
def test_workflow_rejects_empty_pattern_list(field: str) -> None:
    with pytest.raises(ConfigError):
        parse_workflow(workflow_dict(trigger={"kinds": ["push"], field: []}))


def test_unfiltered_push_rule(make_workflow: Callable[..., WorkflowConfig]) -> None:
    wf = make_workflow(trigger={"kinds": ["push"], "path_patterns": ["*.rs"]})
    assert admit(_push("feature-x", "a.rs"), wf.trigger)
    assert not admit(_push("main", "docs/x.md"), wf.trigger)


@pytest.mark.parametrize(
    ("pattern", "ref", "expected"),
    [
        ("bench-*", "bench-lexer", True),
        ("bench-*", "bench-a/b", False),
        ("bench-**", "bench-a/b", True),
        ("release/*", "release/v1", True),
        ("main", "main", True),
        ("main", "main2", False),
        ("v?", "v1", True),
        ("v?", "v/", False),
    ],
)
def test_ref_glob_does_not_cross_slash(pattern: str, ref: str, expected: bool) -> None:
    assert ref_glob_match(pattern, ref) is expected


def test_push_to_nested_branch_is_rejected(workflow: WorkflowConfig) -> None:
    assert not admit(_push("refs/heads/bench-a/b", "src/lexer.rs"), workflow.trigger)


def test_manual_is_always_admitted(make_workflow: Callable[..., WorkflowConfig]) -> None:
    wf = make_workflow(
        trigger={"kinds": ["push"], "ref_patterns": ["main"], "path_patterns": ["*.rs"]}
    )
    ev = ChangeEvent(
        kind=EventKind.manual,
        ref="some-branch",
        commit_sha="abc",
        changed_paths=frozenset({"docs/x.md"}),
    )
    assert admit(ev, wf.trigger)


def test_pull_request_ignores_ref_patterns(workflow: WorkflowConfig) -> None:
    base: dict[str, Any] = {"ref": "feature-x", "commit_sha": "abc", "pr_number": 7}
    ok = ChangeEvent(
        kind=EventKind.pull_request_synchronized,
        changed_paths=frozenset({"crates/a/src/lib.rs"}),
        **base,
    )
    unrelated = ChangeEvent(
        kind=EventKind.pull_request_opened,
        changed_paths=frozenset({"docs/a.md"}),
        **base,
    )
    assert admit(ok, workflow.trigger)
    assert not admit(unrelated, workflow.trigger)


def test_kind_not_listed_is_rejected(make_workflow: Callable[..., WorkflowConfig]) -> None:
    wf = make_workflow(trigger={"kinds": ["push"]})
    ev = ChangeEvent(
        kind=EventKind.pull_request_opened, ref="x", commit_sha="abc", pr_number=1
    )
    assert not admit(ev, wf.trigger)
    assert admit(_push("anything", "any/file"), wf.trigger)
