from __future__ import annotations

import os
import subprocess  # nosec B404
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

import structlog

from bench_dispatch.workflow.models import BuildProfile

log = structlog.get_logger(__name__)

# Shell convention for "command not found".
EXIT_COMMAND_NOT_FOUND = 127


@dataclass(frozen=True, slots=True)
class ToolchainResult:
    exit_code: int
    output: str
    output_dir: Path


class Toolchain(Protocol):
    """Compiles benchmark targets; caching and installation are its own concern."""

    def build(
        self, targets: Sequence[str], profile: BuildProfile, *, cwd: Path
    ) -> ToolchainResult: ...


def build_command(targets: Sequence[str], profile: BuildProfile) -> list[str]:
    cmd = list(profile.command)
    for t in targets:
        if profile.target_flag:
            cmd.append(profile.target_flag)
        cmd.append(t)
    return cmd


class SubprocessToolchain:
    """
    Runs the profile's build command once for all targets.

    No timeout: cancellation is only observed between stages, and the build is
    never interrupted part way.
    """

    def build(
        self, targets: Sequence[str], profile: BuildProfile, *, cwd: Path
    ) -> ToolchainResult:
        cmd = build_command(targets, profile)
        env = {**os.environ, **profile.env}
        output_dir = profile.output_dir if profile.output_dir.is_absolute() else cwd / profile.output_dir

        log.debug("toolchain.exec", cmd=cmd, cwd=str(cwd), env_keys=sorted(profile.env))
        try:
            proc = subprocess.run(  # nosec B603
                cmd,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                check=False,
            )
        except FileNotFoundError as exc:
            return ToolchainResult(
                exit_code=EXIT_COMMAND_NOT_FOUND,
                output=f"{cmd[0]} not found: {exc}",
                output_dir=output_dir,
            )

        return ToolchainResult(
            exit_code=proc.returncode,
            output=proc.stdout or "",
            output_dir=output_dir,
        )
