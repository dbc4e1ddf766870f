from .config import Settings, load_settings
from .errors import (
    BuildError,
    ConfigError,
    DispatchError,
    NormalizeError,
    RunCancelled,
    RunFailed,
    RunTimeoutError,
    StageError,
    stage_error_from_exc,
)
from .fs import (
    FileDigest,
    atomic_copy,
    atomic_write_text,
    ensure_parent,
    file_digest,
    file_size,
    relpath_posix,
    safe_unlink,
)
from .json import atomic_write_json, iter_jsonl, read_json, stable_json_dumps
from .logging import ILogger, bind, clear_bindings, configure_logging, get_logger
from .paths import RunLayout
from .provenance import RunProvenance, new_run_id
from .time import format_duration_ms, monotonic_ms, utc_now, utc_now_iso

__all__ = [
    "atomic_copy",
    "atomic_write_json",
    "atomic_write_text",
    "bind",
    "BuildError",
    "clear_bindings",
    "ConfigError",
    "configure_logging",
    "DispatchError",
    "ensure_parent",
    "file_digest",
    "file_size",
    "FileDigest",
    "format_duration_ms",
    "get_logger",
    "ILogger",
    "iter_jsonl",
    "load_settings",
    "monotonic_ms",
    "new_run_id",
    "NormalizeError",
    "read_json",
    "relpath_posix",
    "RunCancelled",
    "RunFailed",
    "RunLayout",
    "RunProvenance",
    "RunTimeoutError",
    "safe_unlink",
    "Settings",
    "stable_json_dumps",
    "stage_error_from_exc",
    "StageError",
    "utc_now",
    "utc_now_iso",
]
