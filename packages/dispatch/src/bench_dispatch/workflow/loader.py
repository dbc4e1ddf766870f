from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import jsonschema
from pydantic import TypeAdapter, ValidationError

from bench_dispatch.core import ConfigError, read_json

from .models import WorkflowConfig

CONFIG_PATH_ENV = "BENCH_DISPATCH_CONFIG_PATH"
WORKFLOW_FILENAME = "workflow.json"


def resolve_config_path(explicit: Path | None = None) -> Path:
    """
    Resolve the workflow definition file.

    Priority:
      1) explicit argument
      2) env BENCH_DISPATCH_CONFIG_PATH
      3) ./config/workflow.json
      4) discover config/workflow.json by walking upwards from this module (dev checkout)
    """
    if explicit is not None:
        p = explicit.expanduser().resolve()
        if p.is_file():
            return p
        raise ConfigError(f"--config does not point to a file: {p}")

    env = os.environ.get(CONFIG_PATH_ENV)
    if env:
        p = Path(env).expanduser().resolve()
        if p.is_file():
            return p
        raise ConfigError(f"{CONFIG_PATH_ENV} does not point to a file: {p}")

    cand = Path.cwd() / "config" / WORKFLOW_FILENAME
    if cand.is_file():
        return cand.resolve()

    here = Path(__file__).resolve()
    for parent in here.parents:
        cand = parent / "config" / WORKFLOW_FILENAME
        if cand.is_file():
            return cand.resolve()

    raise ConfigError(
        "Could not resolve workflow definition. "
        f"Pass --config or set {CONFIG_PATH_ENV}."
    )


def schema_for_workflow() -> dict[str, Any]:
    return TypeAdapter(WorkflowConfig).json_schema()


def parse_workflow(raw: Any, *, source: str = "<memory>") -> WorkflowConfig:
    try:
        jsonschema.validate(instance=raw, schema=schema_for_workflow())
    except jsonschema.ValidationError as e:
        loc = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"{source}: {loc}: {e.message}") from e

    try:
        return WorkflowConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"{source}: {e}") from e


def load_workflow(path: Path | None = None) -> WorkflowConfig:
    cfg_path = resolve_config_path(path)
    try:
        raw = read_json(cfg_path)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to read workflow definition: {cfg_path}") from e
    return parse_workflow(raw, source=str(cfg_path))
