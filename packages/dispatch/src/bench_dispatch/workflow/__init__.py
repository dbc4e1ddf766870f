from .loader import load_workflow, parse_workflow, resolve_config_path
from .models import (
    BenchRunnerConfig,
    BuildProfile,
    ConcurrencyConfig,
    NormalizeConfig,
    TriggerRule,
    WorkflowConfig,
)

__all__ = [
    "BenchRunnerConfig",
    "BuildProfile",
    "ConcurrencyConfig",
    "NormalizeConfig",
    "TriggerRule",
    "WorkflowConfig",
    "load_workflow",
    "parse_workflow",
    "resolve_config_path",
]
