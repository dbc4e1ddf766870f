from __future__ import annotations

import subprocess  # nosec B404
import time
from pathlib import Path

import structlog
from pydantic import SecretStr

from bench_dispatch.core import RunCancelled, RunTimeoutError, monotonic_ms
from bench_dispatch.models import ArtifactSet, JobRun, RunResult, RunState

from .process import BenchRunner, drain_output, kill_process_tree

log = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL_S = 0.2


def artifact_dir_of(artifacts: ArtifactSet) -> Path:
    """The single directory holding every staged artifact."""
    if not artifacts:
        raise ValueError("no staged artifacts to run")
    parents = {Path(p).parent for p in artifacts.values()}
    if len(parents) != 1:
        raise ValueError(
            f"staged artifacts span {len(parents)} directories: {sorted(map(str, parents))}"
        )
    return parents.pop()


def run_benchmarks(
    artifacts: ArtifactSet,
    credentials: SecretStr | None,
    timeout: float,
    *,
    runner: BenchRunner,
    cwd: Path,
    run: JobRun | None = None,
    kill_grace_s: float = 5.0,
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
) -> RunResult:
    """
    Invoke the benchmark runner once for the whole artifact set and wait for it.

    The wait is bounded by `timeout` seconds; past it the runner's process tree
    is killed and RunTimeoutError is raised. If `run` is cancelled meanwhile the
    process tree is killed and RunCancelled is raised. Per-benchmark results are
    opaque: the exit status decides Succeeded/Failed and the output is returned
    verbatim as payload.
    """
    if timeout <= 0:
        raise ValueError("timeout must be > 0")

    artifact_dir = artifact_dir_of(artifacts)
    t0 = monotonic_ms()
    deadline = time.monotonic() + timeout

    proc = runner.start(artifact_dir, credentials, cwd=cwd)
    log.info("runner.started", pid=proc.pid, artifact_dir=str(artifact_dir), timeout_s=timeout)

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            kill_process_tree(proc, grace_s=kill_grace_s)
            drain_output(proc, timeout_s=kill_grace_s)
            log.error("runner.timeout", pid=proc.pid, timeout_s=timeout)
            raise RunTimeoutError(timeout_s=timeout)

        if run is not None and run.cancel_requested.is_set():
            kill_process_tree(proc, grace_s=kill_grace_s)
            drain_output(proc, timeout_s=kill_grace_s)
            log.info("runner.abandoned", pid=proc.pid, run_id=run.id)
            raise RunCancelled(run_id=run.id, dedup_key=run.dedup_key)

        try:
            out, _ = proc.communicate(timeout=min(poll_interval_s, remaining))
            break
        except subprocess.TimeoutExpired:
            continue

    exit_code = int(proc.returncode)
    state = RunState.succeeded if exit_code == 0 else RunState.failed
    duration = monotonic_ms() - t0
    log.info("runner.finished", pid=proc.pid, exit_code=exit_code, duration_ms=duration)

    return RunResult(
        state=state,
        exit_code=exit_code,
        payload=out or "",
        duration_ms=duration,
    )
