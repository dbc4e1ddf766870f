from __future__ import annotations

import os
import subprocess  # nosec B404
from pathlib import Path
from typing import Protocol

import psutil
import structlog
from pydantic import SecretStr

from bench_dispatch.workflow.models import BenchRunnerConfig

log = structlog.get_logger(__name__)


class BenchRunner(Protocol):
    """
    External benchmark-execution service. Started once per run; the caller owns
    the returned process and is responsible for timing it out.
    """

    def start(
        self, artifact_dir: Path, token: SecretStr | None, *, cwd: Path
    ) -> subprocess.Popen[str]: ...


class SubprocessBenchRunner:
    def __init__(self, cfg: BenchRunnerConfig) -> None:
        self.cfg = cfg

    def start(
        self, artifact_dir: Path, token: SecretStr | None, *, cwd: Path
    ) -> subprocess.Popen[str]:
        env = dict(os.environ)
        env[self.cfg.artifact_dir_env] = str(artifact_dir)
        if token is not None:
            env[self.cfg.token_env] = token.get_secret_value()

        # env is never logged: it carries the token.
        log.debug(
            "runner.exec",
            cmd=list(self.cfg.command),
            cwd=str(cwd),
            artifact_dir=str(artifact_dir),
            token_set=token is not None,
        )
        return subprocess.Popen(  # nosec B603
            list(self.cfg.command),
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )


def kill_process_tree(proc: subprocess.Popen[str], *, grace_s: float) -> None:
    """
    Terminate `proc` and all of its descendants, escalating to SIGKILL after
    `grace_s`. `proc` is reaped before returning.
    """
    try:
        children = psutil.Process(proc.pid).children(recursive=True)
    except psutil.Error:
        children = []

    for child in children:
        try:
            child.terminate()
        except psutil.Error:
            pass
    if proc.poll() is None:
        proc.terminate()

    _, alive = psutil.wait_procs(children, timeout=grace_s)
    for child in alive:
        try:
            child.kill()
        except psutil.Error:
            pass

    try:
        proc.wait(timeout=grace_s)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def drain_output(proc: subprocess.Popen[str], *, timeout_s: float) -> str:
    """Collect whatever the (already dead) process wrote, then close its pipes."""
    try:
        out, _ = proc.communicate(timeout=timeout_s)
    except (subprocess.TimeoutExpired, ValueError, OSError):
        out = ""
    finally:
        if proc.stdout is not None and not proc.stdout.closed:
            proc.stdout.close()
    return out or ""
