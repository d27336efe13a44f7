"""
Structured JSON logging for the voucher kernel.

One JSON object per line: ``ts``, ``level``, ``logger`` and ``message``,
then the request fields held by ``LogContext``, then every ``extra=``
field of the call.  A logged kernel exception contributes its ``code`` and
its public attributes as ``exc_*`` fields, so a rejected allocation can be
read back without parsing the message text.
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
from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterator
from uuid import UUID

_EMPTY: Mapping[str, str] = MappingProxyType({})


class LogContext:
    """
    Request-scoped log fields, isolated per thread and per asyncio task.

    Only the names in ``FIELDS`` are carried; values are stored as strings.
    """

    FIELDS = (
        "correlation_id",
        "tenant_id",
        "actor_id",
        "document_id",
        "series_id",
        "trace_id",
    )

    _fields: ContextVar[Mapping[str, str]] = ContextVar("voucher_log_context", default=_EMPTY)

    @classmethod
    def _merged(cls, values: Mapping[str, Any]) -> Mapping[str, str]:
        merged = dict(cls._fields.get())
        for name, value in values.items():
            if value is not None and name in cls.FIELDS:
                merged[name] = str(value)
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **values: Any) -> None:
        """Add or overwrite fields; None values and unknown names are ignored."""
        cls._fields.set(cls._merged(values))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        token = cls._fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


_ROOT_NAME = "voucher_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger ``voucher_kernel.<name>``; engines and services share the root."""
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``voucher_kernel`` logger.

    Only the first call has an effect.  Records do not propagate to the
    root logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

        root = logging.getLogger(_ROOT_NAME)
        root.setLevel(level)
        root.propagate = False
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)


def reset_logging() -> None:
    """Undo configure_logging.  Tests only."""
    global _configured
    with _lock:
        _configured = False
        root = logging.getLogger(_ROOT_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
