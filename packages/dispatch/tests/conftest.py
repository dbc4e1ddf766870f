from __future__ import annotations

import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest
from pydantic import SecretStr

from bench_dispatch.stages.build.toolchain import ToolchainResult
from bench_dispatch.workflow import WorkflowConfig, parse_workflow
from bench_dispatch.workflow.models import BuildProfile

TARGETS = ("lexer", "parser", "transformer", "semantic", "linter")


def workflow_dict(**overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "name": "Benchmark",
        "trigger": {
            "kinds": [
                "manual",
                "pull_request_opened",
                "pull_request_synchronized",
                "push",
            ],
            "ref_patterns": ["main", "bench-*"],
            "path_patterns": ["*.rs", "Cargo.lock"],
        },
        "targets": list(TARGETS),
        "runner": {"timeout_minutes": 1, "kill_grace_s": 1},
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowConfig]:
    def _make(**overrides: Any) -> WorkflowConfig:
        return parse_workflow(workflow_dict(**overrides))

    return _make


@pytest.fixture
def workflow(make_workflow: Callable[..., WorkflowConfig]) -> WorkflowConfig:
    return make_workflow()


@dataclass
class ToolchainStub:
    """
    Writes `<target>-<hash>` plus a `.d` sidecar per target into the output dir.
    Binary contents name the build (`build<N>:<target>`), and overlapping
    builds are counted in `max_active`.
    """

    exit_code: int = 0
    output: str = "Finished `release` profile\n"
    skip: frozenset[str] = frozenset()
    calls: list[tuple[str, ...]] = field(default_factory=list)
    before: Callable[[], None] | None = None
    delay: float = 0.0
    active: int = 0
    max_active: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def build(
        self, targets: Sequence[str], profile: BuildProfile, *, cwd: Path
    ) -> ToolchainResult:
        with self._lock:
            self.calls.append(tuple(targets))
            n = len(self.calls)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.before is not None:
                self.before()
            if self.delay:
                time.sleep(self.delay)
            out_dir = cwd / profile.output_dir
            out_dir.mkdir(parents=True, exist_ok=True)
            if self.exit_code == 0:
                for t in targets:
                    if t in self.skip:
                        continue
                    (out_dir / f"{t}-0a1b2c3d").write_bytes(f"build{n}:{t}".encode())
                    (out_dir / f"{t}-0a1b2c3d.d").write_text("deps")
        finally:
            with self._lock:
                self.active -= 1
        return ToolchainResult(exit_code=self.exit_code, output=self.output, output_dir=out_dir)


@pytest.fixture
def toolchain() -> ToolchainStub:
    return ToolchainStub()


class ScriptRunnerStub:
    """Starts `python -c <script>` in place of the external benchmark service."""

    def __init__(self, script: str) -> None:
        self.script = script
        self.started: list[tuple[Path, SecretStr | None]] = []
        self.procs: list[subprocess.Popen[str]] = []

    def start(
        self, artifact_dir: Path, token: SecretStr | None, *, cwd: Path
    ) -> subprocess.Popen[str]:
        self.started.append((artifact_dir, token))
        proc = subprocess.Popen(
            [sys.executable, "-c", self.script, str(artifact_dir)],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )
        self.procs.append(proc)
        return proc


LIST_ARTIFACTS = (
    "import os, sys\n"
    "print('\\n'.join(sorted(os.listdir(sys.argv[1]))))\n"
)

CAT_ARTIFACTS = (
    "import os, sys\n"
    "d = sys.argv[1]\n"
    "for name in sorted(os.listdir(d)):\n"
    "    print(open(os.path.join(d, name)).read())\n"
)

SLEEP_FOREVER = "import time\nprint('started', flush=True)\ntime.sleep(120)\n"


@pytest.fixture
def ok_runner() -> ScriptRunnerStub:
    return ScriptRunnerStub(LIST_ARTIFACTS)


@pytest.fixture
def make_runner() -> Callable[[str], ScriptRunnerStub]:
    return ScriptRunnerStub


@pytest.fixture
def sleepy_runner() -> ScriptRunnerStub:
    return ScriptRunnerStub(SLEEP_FOREVER)
