from __future__ import annotations

import traceback
from dataclasses import dataclass


class DispatchError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str


def stage_error_from_exc(exc: BaseException) -> StageError:
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback=traceback.format_exc(),
    )


class ConfigError(DispatchError):
    """Workflow definition or process settings are invalid"""


class BuildError(DispatchError):
    """
    Toolchain exited non-zero, or finished without producing every required
    target. Never retried.
    """

    def __init__(
        self,
        *,
        exit_code: int,
        captured_output: str = "",
        missing_targets: tuple[str, ...] = (),
    ) -> None:
        if missing_targets:
            msg = f"build produced no output for target(s): {', '.join(missing_targets)}"
        else:
            msg = f"build failed with exit code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code
        self.captured_output = captured_output
        self.missing_targets = missing_targets


class NormalizeError(DispatchError):
    """
    Build outputs do not satisfy the target naming contract.
    """

    def __init__(self, *, target: str, reason: str) -> None:
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class RunTimeoutError(DispatchError, TimeoutError):
    """External benchmark run exceeded its wall-clock bound"""

    def __init__(self, *, timeout_s: float) -> None:
        super().__init__(f"benchmark run exceeded timeout of {timeout_s:g}s")
        self.timeout_s = timeout_s


class RunFailed(DispatchError):
    """External benchmark runner reported failure"""

    def __init__(self, *, exit_code: int, payload: str) -> None:
        super().__init__(f"benchmark runner exited with code {exit_code}")
        self.exit_code = exit_code
        self.payload = payload


class RunCancelled(DispatchError):
    """
    Run was superseded by a newer event for the same dedup key.

    Not an error outcome; raised to unwind the pipeline at a stage boundary.
    """

    def __init__(self, *, run_id: str, dedup_key: str) -> None:
        super().__init__(f"run {run_id} superseded ({dedup_key})")
        self.run_id = run_id
        self.dedup_key = dedup_key
