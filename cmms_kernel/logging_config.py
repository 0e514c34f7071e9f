"""
Structured JSON logging for the CMMS kernel.

Every kernel module logs through ``get_logger(<area>)``, which hangs off the
``cmms_kernel`` logger.  Events are snake_case message names; payload goes in
``extra=``.  ``StructuredFormatter`` renders one JSON object per line and
merges in the fields bound on ``LogContext`` (actor, item, schedule, batch,
correlation), so a ledger write logged deep inside AtomicRetry still carries
the batch run that caused it.

Kernel errors are expanded: ``exc_code`` plus one ``exc_<attr>`` per public
attribute of the exception (item_id, requested, on_hand, ...).
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER_NAME = "cmms_kernel"

CONTEXT_FIELDS = frozenset({
    "correlation_id",
    "actor_id",
    "item_id",
    "schedule_id",
    "batch_id",
})

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("cmms_log_context", default=_EMPTY)


def _check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - CONTEXT_FIELDS
    if unknown:
        raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")


class LogContext:
    """
    Request-scoped log fields held in one context variable.

    Safe across threads and asyncio tasks: each carries its own copy.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Overwrite the named fields; None leaves a field as it is."""
        _check_fields(fields)
        current = dict(_bound.get())
        current.update({k: v for k, v in fields.items() if v is not None})
        _bound.set(MappingProxyType(current))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Bind stringified non-None fields for the ``with`` block."""
        _check_fields(fields)
        merged = dict(_bound.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _bound.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _bound.reset(token)


# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in exc.__dict__.items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_bound.get(),
        }
        for name, value in record.__dict__.items():
            if name not in _RECORD_ATTRS:
                entry.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger for one kernel area, e.g. ``get_logger("services.stock_ledger")``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the ``cmms_kernel`` logger.

    Only the first call after start-up (or after ``reset_logging``) has any
    effect; engine initialisation calls this unconditionally.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach the handler so the next configure_logging() applies. Tests only."""
    global _handler
    with _setup_lock:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _handler = None
