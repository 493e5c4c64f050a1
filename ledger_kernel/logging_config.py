"""
Structured JSON logging for the ledger core.

Every record under the ``ledger_kernel`` logger tree is rendered as one JSON
object per line.  Fields bound through :class:`LogContext` (correlation id,
acting user, the document and journal being worked on, the producing
component) are attached to every record emitted inside the bound scope, so
call sites only pass event-specific data through ``extra={...}``.

Usage::

    logger = get_logger("services.stock_ledger")
    with LogContext.bind(document_id=doc.id, actor_id=actor):
        logger.info("stock_withdrawn", extra={"quantity": qty})
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
from typing import Any, TextIO
from uuid import UUID

_LOGGER_PREFIX = "ledger_kernel"

CONTEXT_FIELDS = ("correlation_id", "actor_id", "document_id", "journal_id", "producer")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


class LogContext:
    """Unit-of-work scoped log fields, safe across threads and tasks.

    The bound fields live in a single immutable mapping held by a
    ContextVar; every change installs a new mapping.
    """

    @staticmethod
    def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
        current = dict(_context.get())
        for name, value in fields.items():
            if name in CONTEXT_FIELDS and value is not None:
                current[name] = str(value)
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields. None values and unknown names are ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # LedgerError subclasses expose their details as public attributes
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Key order is: timestamp, level, logger, message, bound context, extras,
    exception details.  A bound context field is never overwritten by an
    extra of the same name.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``ledger_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``ledger_kernel`` tree.

    Only the first call has an effect until :func:`reset_logging` runs.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        _installed_handler = target

    tree = logging.getLogger(_LOGGER_PREFIX)
    tree.setLevel(level)
    tree.propagate = False
    tree.addHandler(target)


def reset_logging() -> None:
    """Detach every handler so tests can configure afresh."""
    global _installed_handler
    with _state_lock:
        _installed_handler = None
    tree = logging.getLogger(_LOGGER_PREFIX)
    tree.handlers.clear()
    tree.setLevel(logging.WARNING)
