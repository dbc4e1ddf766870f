from .build import BuildStage
from .dispatch import DispatchStage
from .normalize import NormalizeStage

__all__ = [
    "BuildStage",
    "NormalizeStage",
    "DispatchStage",
]
