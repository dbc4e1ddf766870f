from .runner import normalize, prune_metadata
from .select import candidates_for, select_candidate
from .stage import NormalizeStage

__all__ = [
    "NormalizeStage",
    "candidates_for",
    "normalize",
    "prune_metadata",
    "select_candidate",
]
