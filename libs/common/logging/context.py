"""Trace ID context for correlating log lines and audit events.

A trace ID is a UUIDv4 string held in a context variable, so each asyncio
task sees its own value. The broker stamps it on every AuditEvent and the
JSON formatter adds it to every log record.

Example:
    >>> with LogContext() as trace_id:
    ...     await broker.rotate_secret("auth/jwt-secret", actor="ops")
    ...     # audit event and log lines carry trace_id
"""

import contextvars
import uuid
from types import TracebackType

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)


def generate_trace_id() -> str:
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    """Trace ID of the current context, or None when unset."""
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    _trace_id_var.set(None)


class LogContext:
    """Scoped trace ID; the previous value is restored on exit.

    Args:
        trace_id: Trace ID for the block. A new one is generated when None.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or generate_trace_id()
        self.previous_trace_id: str | None = None

    def __enter__(self) -> str:
        self.previous_trace_id = get_trace_id()
        set_trace_id(self.trace_id)
        return self.trace_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_trace_id is not None:
            set_trace_id(self.previous_trace_id)
        else:
            clear_trace_id()
