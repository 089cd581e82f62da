"""
Structured JSON logging for the stock ledger.

Every record under the ``stock_ledger`` logger namespace is emitted as a
single JSON line.  Fields bound through LogContext (the correlation id of
the current ledger operation, the product, the actor, the order reference
and the operation name) are merged into every record written while the
binding is active, so an adjustment's start, commit and status-change
lines can be joined on ``correlation_id``.

Usage:
    logger = get_logger("services.adjustment_engine")
    with LogContext.bind(product_id=product.id, operation="apply_adjustment"):
        logger.info("adjustment_committed", extra={"quantity_after": 12})
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
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "product_id",
    "actor_id",
    "reference_id",
    "operation",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"stock_ledger_log_{name}", default=None)
    for name in _CONTEXT_FIELDS
}


class LogContext:
    """Per-thread / per-task ledger fields merged into every log record."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Set context fields.  None values and unknown names are ignored."""
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        """Return the bound (non-None) context fields."""
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """Bind fields for the duration of a ``with`` block, then restore."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record: ``ts``, ``level``, ``logger``, ``message``,
    then bound LogContext fields, then ``extra`` fields.  A bound context
    field wins over an ``extra`` field of the same name.

    Exceptions add ``exc_type``, ``exc_message`` and ``traceback``; ledger
    errors also contribute ``exc_code``, ``exc_retryable`` and one
    ``exc_<attr>`` entry per structured attribute (``exc_current_stock``,
    ``exc_report_id`` ...).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
            fields["exc_retryable"] = getattr(exc, "retryable", False)
        for attr, value in vars(exc).items():
            if not attr.startswith("_") and attr != "code":
                fields[f"exc_{attr}"] = value
        return fields


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "stock_ledger"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the stock_ledger namespace, e.g. ``stock_ledger.services.locking``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``stock_ledger`` logger.

    Idempotent: only the first call after import (or after
    ``reset_logging()``) has any effect.  Records do not propagate to the
    root logger, so host applications see ledger lines only through this
    handler.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.setLevel(level)
    ledger_logger.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    ledger_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and the configured flag.  For tests."""
    global _configured
    with _lock:
        _configured = False
    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.handlers.clear()
    ledger_logger.setLevel(logging.WARNING)
