"""
Structured JSON logging for the deal registration kernel.

Every record is one JSON object: ``ts``, ``level``, ``logger``, ``message``
(a snake_case event name such as ``approval_action_processed``), the bound
deal context, then the record's ``extra`` fields.  Kernel exceptions logged
with ``exc_info`` contribute ``exc_code`` and their structured attributes.

Deal context is bound around a unit of work and nests::

    with LogContext.bind(batch_id=batch_id, actor_id=approver_id):
        for deal_id in deal_ids:
            with LogContext.bind(deal_id=deal_id):
                ...  # records carry batch_id, actor_id and deal_id

Only the fields in ``CONTEXT_FIELDS`` can be bound.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = ("deal_id", "actor_id", "batch_id")

_LOGGER_PREFIX = "dealreg_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})

_context: ContextVar[Mapping[str, str]] = ContextVar(
    "dealreg_log_context", default=_EMPTY
)


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """Deal-scoped log fields, carried in a contextvar (thread and task safe)."""

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Merge ``fields`` into the current context for the ``with`` body.

        Values are stringified; ``None`` values are skipped.  An unknown
        field name raises ValueError.
        """
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context field(s): {sorted(unknown)}")

        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Kernel exceptions keep their structured data as plain attributes.
    for key, value in vars(exc).items():
        if not key.startswith("_") and key != "code":
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the dealreg_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def _installed_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if getattr(h, "_dealreg_handler", False)]


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the dealreg_kernel logger.

    Idempotent: once a handler has been installed, later calls do nothing
    until ``reset_logging()``.  Handlers added by others (log capture in
    tests, for example) are left alone.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    if _installed_handlers(root):
        return

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    h._dealreg_handler = True
    root.addHandler(h)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Remove the handler ``configure_logging`` installed.  For tests."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for h in _installed_handlers(root):
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
