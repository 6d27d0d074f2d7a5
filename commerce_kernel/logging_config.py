"""
Structured JSON logging for the commerce kernel.

Every record is one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "commerce_kernel.services.stock_ledger",
     "message": "stock_adjusted", "correlation_id": ..., "order_id": ...,
     "delta": -2, "quantity_after": 3}

Messages are snake_case event names; details go in ``extra``.  Request-scoped
identifiers (who is acting, on which order or conversation) are carried in
``LogContext`` and merged into every record emitted while they are bound.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

LOGGER_NAMESPACE = "commerce_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "merchant_ref",
    "order_id",
    "conversation_id",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"commerce_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields backed by contextvars.

    Safe across threads and asyncio tasks: each worker thread of the
    orchestrator sees only the fields it bound itself.  Names outside
    CONTEXT_FIELDS are ignored.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set the given fields; None values leave the current value alone."""
        for name, value in fields.items():
            var = _CONTEXT_VARS.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _CONTEXT_VARS.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (var, var.set(str(value)))
            for name, value in fields.items()
            if value is not None and (var := _CONTEXT_VARS.get(name)) is not None
        ]
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# LogRecord attributes that are never treated as structured extras
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message, machine code and structured attributes of an exception."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for attr, value in vars(exc).items():
        if not attr.startswith("_") and attr != "code":
            fields[f"exc_{attr}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger for a kernel component, e.g. ``get_logger("services.stock_ledger")``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_state_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``commerce_kernel`` logger.

    Idempotent: later calls are ignored until ``reset_logging``.  Records do
    not propagate to the root logger, so a host application's own handlers
    are left alone.
    """
    global _configured
    with _state_lock:
        if _configured:
            return
        _configured = True

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Remove the kernel handler and forget the configuration. For tests."""
    global _configured
    with _state_lock:
        _configured = False
        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        for handler in list(kernel_logger.handlers):
            kernel_logger.removeHandler(handler)
        kernel_logger.setLevel(logging.WARNING)
