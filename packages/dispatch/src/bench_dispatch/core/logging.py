from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Protocol, runtime_checkable

import structlog
from pydantic import SecretStr
from rich.logging import RichHandler
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

_CONFIGURED = False

REDACTED = "**********"

# Keys whose values are credentials regardless of type.
SECRET_KEYS = frozenset({"token", "credentials", "authorization", "password"})


@runtime_checkable
class ILogger(Protocol):
    def debug(self, event: str, **kw: Any) -> Any: ...
    def info(self, event: str, **kw: Any) -> Any: ...
    def warning(self, event: str, **kw: Any) -> Any: ...
    def error(self, event: str, **kw: Any) -> Any: ...
    def exception(self, event: str, **kw: Any) -> Any: ...
    def bind(self, **kw: Any) -> "ILogger": ...


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential values before any renderer sees them."""
    for key, value in event_dict.items():
        if isinstance(value, SecretStr) or (key.lower() in SECRET_KEYS and value is not None):
            event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(*, level: str = "INFO", fmt: str = "console") -> None:
    """
    Route structlog through stdlib logging.

    console: key=value lines through a RichHandler on stderr, leaving stdout to
    the CLI's tables. json: one JSON object per line on stdout for CI log
    collectors.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    lvl = level.upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(lvl)

    handler: logging.Handler
    if fmt == "console":
        handler = RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_time=False,
            show_path=False,
            console=None,
        )
        renderer: Any = structlog.processors.KeyValueRenderer(
            sort_keys=True, key_order=["event", "run_id", "stage"], drop_missing=True
        )
    else:
        handler = logging.StreamHandler(stream=sys.stdout)
        renderer = structlog.processors.JSONRenderer(default=str)

    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(lvl)
    root.addHandler(handler)

    structlog.configure(
        processors=[*_shared_processors(), renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(lvl)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str = "bench_dispatch") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind(**values: Any) -> None:
    bind_contextvars(**values)


def clear_bindings() -> None:
    clear_contextvars()
