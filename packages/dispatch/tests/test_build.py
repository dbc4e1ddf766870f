from __future__ import annotations

import sys
from pathlib import Path

import pytest

from bench_dispatch.concurrency import new_run
from bench_dispatch.core import BuildError
from bench_dispatch.models import ChangeEvent, EventKind
from bench_dispatch.stages.build import SubprocessToolchain, build, build_command
from bench_dispatch.workflow import WorkflowConfig
from bench_dispatch.workflow.models import BuildProfile

from conftest import ToolchainStub

EVENT = ChangeEvent(kind=EventKind.manual, ref="main", commit_sha="abc")


def test_build_command_repeats_target_flag() -> None:
    profile = BuildProfile(command=("cargo", "build"), target_flag="--bench")
    assert build_command(["lexer", "parser"], profile) == [
        "cargo",
        "build",
        "--bench",
        "lexer",
        "--bench",
        "parser",
    ]


def test_build_maps_each_target_to_output_dir(
    tmp_path: Path, workflow: WorkflowConfig, toolchain: ToolchainStub
) -> None:
    arts, res = build(
        new_run(workflow, EVENT),
        workflow.build,
        targets=workflow.targets,
        toolchain=toolchain,
        workspace=tmp_path,
    )
    assert set(arts) == set(workflow.targets)
    assert set(arts.values()) == {tmp_path / "target" / "release" / "deps"}
    assert res.exit_code == 0
    assert toolchain.calls == [workflow.targets]


def test_non_zero_exit_raises_build_error_with_output(
    tmp_path: Path, workflow: WorkflowConfig
) -> None:
    tc = ToolchainStub(exit_code=101, output="error[E0425]: cannot find value\n")
    with pytest.raises(BuildError) as ei:
        build(
            new_run(workflow, EVENT),
            workflow.build,
            targets=workflow.targets,
            toolchain=tc,
            workspace=tmp_path,
        )
    assert ei.value.exit_code == 101
    assert "E0425" in ei.value.captured_output
    assert len(tc.calls) == 1


def test_missing_target_output_raises_build_error(
    tmp_path: Path, workflow: WorkflowConfig
) -> None:
    tc = ToolchainStub(skip=frozenset({"semantic"}))
    with pytest.raises(BuildError) as ei:
        build(
            new_run(workflow, EVENT),
            workflow.build,
            targets=workflow.targets,
            toolchain=tc,
            workspace=tmp_path,
        )
    assert ei.value.missing_targets == ("semantic",)


def test_subprocess_toolchain_captures_output_and_env(tmp_path: Path) -> None:
    script = "import os, sys; print('flags=' + os.environ['RUSTFLAGS']); print(sys.argv[1:])"
    profile = BuildProfile(
        command=(sys.executable, "-c", script),
        target_flag="--bench",
        env={"RUSTFLAGS": "--cfg codspeed"},
        output_dir=Path("out"),
    )
    res = SubprocessToolchain().build(["lexer"], profile, cwd=tmp_path)
    assert res.exit_code == 0
    assert "flags=--cfg codspeed" in res.output
    assert "['--bench', 'lexer']" in res.output
    assert res.output_dir == tmp_path / "out"


def test_subprocess_toolchain_missing_binary(tmp_path: Path) -> None:
    profile = BuildProfile(command=("definitely-not-a-real-toolchain-binary",))
    res = SubprocessToolchain().build(["lexer"], profile, cwd=tmp_path)
    assert res.exit_code == 127
    assert "not found" in res.output
