"""
Structured logging for the posting spine (``posting_spine.logging_config``).

Responsibility
--------------
Emits one JSON object per log line for every service and guard in the
spine.  Each line carries the posting scope it was written under: the
tenant, actor, document, economic event and posting batch bound by the
engine that is running.

Architecture position
---------------------
**Infrastructure** -- imported by services, selectors and db guards through
``get_logger``.  Depends only on ``domain.decimal_math`` and the exception
hierarchy.

Conventions
-----------
* Messages are snake_case event names (``document_posted``,
  ``reversal_completed``); everything else goes in ``extra``.
* Scope fields come from ``LogContext``; an ``extra`` key of the same name
  is more specific and replaces it on that record.
* Decimal amounts render as canonical 4-decimal strings.
* A ``PostingSpineError`` renders as ``error_code`` plus one
  ``error_<attr>`` key per structured attribute.  Other exceptions get a
  traceback.
"""

from __future__ import annotations

__all__ = [
    "SCOPE_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "error_fields",
    "get_logger",
    "log_rejection",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator
from uuid import UUID

from posting_spine.domain.decimal_math import format_amount
from posting_spine.exceptions import PostingSpineError

if TYPE_CHECKING:
    from posting_spine.config import SpineSettings

LOGGER_NAMESPACE = "posting_spine"

SCOPE_FIELDS = (
    "tenant_id",
    "actor_id",
    "document_id",
    "event_id",
    "batch_id",
    "correlation_id",
)

_scope: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"posting_spine_{name}", default=None) for name in SCOPE_FIELDS
}


class LogContext:
    """Posting scope attached to every record written inside it.

    Values are stored as strings; ``None`` leaves a field untouched.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        for name, value in fields.items():
            if name not in _scope:
                raise TypeError(f"Unknown log scope field: {name}")
            if value is not None:
                _scope[name].set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {name: var.get() for name, var in _scope.items() if var.get() is not None}

    @staticmethod
    def clear() -> None:
        for var in _scope.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[dict[str, str]]:
        """Bind scope fields for the duration of a block, restoring on exit."""
        unknown = sorted(set(fields) - set(_scope))
        if unknown:
            raise TypeError(f"Unknown log scope field(s): {', '.join(unknown)}")
        tokens = [
            (_scope[name], _scope[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield LogContext.get_all()
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def bind_document(document: Any, actor_id: Any = None):
        """Bind the tenant and document of a loaded ``Document`` row."""
        return LogContext.bind(
            tenant_id=document.tenant_id, document_id=document.id, actor_id=actor_id
        )


def error_fields(exc: BaseException) -> dict[str, Any]:
    """Structured attributes of an exception as ``error_<attr>`` keys."""
    fields: dict[str, Any] = {
        "error_code": getattr(exc, "code", type(exc).__name__),
        "error_type": type(exc).__name__,
    }
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"error_{name}"] = value
    return fields


def log_rejection(
    logger: logging.Logger,
    message: str,
    exc: BaseException,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log a refused operation with the error's code and attributes.

    No traceback: rejections are expected outcomes the caller handles.
    """
    logger.log(level, message, extra={**error_fields(exc), **extra})


# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}
_ENVELOPE = frozenset({"ts", "level", "logger"})


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_amount(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, datetime, date)):
        return str(value) if isinstance(value, UUID) else value.isoformat()
    if isinstance(value, (tuple, list, set, frozenset)):
        return [_jsonable(v) for v in value]
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, scope, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in _ENVELOPE:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            for key, value in error_fields(exc).items():
                payload.setdefault(key, value)
            if not isinstance(exc, PostingSpineError):
                payload["error_message"] = str(exc)
                payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``posting_spine`` namespace, e.g. ``services.posting``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str | None = None,
    settings: SpineSettings | None = None,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``posting_spine`` hierarchy once.

    ``level`` wins over ``settings.log_level``; both default to INFO.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if level is None:
        level = settings.log_level if settings is not None else logging.INFO
    if isinstance(level, str):
        level = level.upper()

    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(level)
    root.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)


def reset_logging() -> None:
    """Drop handlers and the configured flag. Test suites only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
