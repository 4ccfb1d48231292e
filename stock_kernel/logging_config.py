"""
Module: stock_kernel.logging_config
Responsibility: One JSON object per log line, enriched with the request
    context (correlation id, tenant, actor, path, trace id).
Architecture position: Kernel infrastructure.  Imported by every service and
    by the HTTP layer; depends on nothing else in the kernel.

Invariants enforced:
    - Context fields are stored in a single ContextVar, so concurrent
      requests (threads or tasks) never see each other's values.
    - ``configure_logging`` attaches at most one handler per process until
      ``reset_logging`` is called.

Failure modes:
    - Unknown context field name -> KeyError.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

ROOT_LOGGER_NAME = "stock_kernel"

_CONTEXT_FIELDS = ("correlation_id", "tenant_id", "actor_id", "request_path", "trace_id")
_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("stock_log_context", default=_EMPTY)


def _checked(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(_CONTEXT_FIELDS)
    if unknown:
        raise KeyError(", ".join(sorted(unknown)))
    return {name: str(value) for name, value in fields.items() if value is not None}


class LogContext:
    """
    Request-scoped fields copied onto every log line.

    Contract:
        ``set`` merges non-None values into the current context; ``bind``
        does the same for the duration of a ``with`` block and then restores
        whatever was there before.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        updates = _checked(fields)
        if updates:
            _context.set(MappingProxyType({**_context.get(), **updates}))

    @staticmethod
    def get(name: str) -> str | None:
        if name not in _CONTEXT_FIELDS:
            raise KeyError(name)
        return _context.get().get(name)

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        updates = _checked(fields)
        token = _context.set(MappingProxyType({**_context.get(), **updates}))
        try:
            yield LogContext
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return repr(value)


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        line.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in line
        )
        if record.exc_info and record.exc_info[1] is not None:
            line.update(self._exception_fields(record))
        return json.dumps(line, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # StockKernelError subclasses keep their details as instance attributes
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Child of the ``stock_kernel`` logger, e.g. ``get_logger("services.stock")``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_configure_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``stock_kernel`` logger once."""
    global _handler
    with _configure_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach the handler so the next ``configure_logging`` call applies. Tests only."""
    global _handler
    with _configure_lock:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _handler = None
