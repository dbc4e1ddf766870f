from __future__ import annotations

import os
import platform
import uuid
from dataclasses import dataclass, field


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class RunProvenance:
    """
    Where and on what a dispatcher process ran. Stored in each run report.
    """

    hostname: str = field(default_factory=platform.node)
    pid: int = field(default_factory=os.getpid)
    python: str = field(default_factory=lambda: platform.python_version())
    platform: str = field(default_factory=lambda: platform.platform())

    def to_dict(self) -> dict[str, object]:
        return {
            "hostname": self.hostname,
            "pid": self.pid,
            "python": self.python,
            "platform": self.platform,
        }
