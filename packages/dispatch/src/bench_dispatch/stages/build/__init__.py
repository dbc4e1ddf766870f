from .runner import build
from .stage import BuildStage
from .toolchain import SubprocessToolchain, Toolchain, ToolchainResult, build_command

__all__ = [
    "BuildStage",
    "SubprocessToolchain",
    "Toolchain",
    "ToolchainResult",
    "build",
    "build_command",
]
