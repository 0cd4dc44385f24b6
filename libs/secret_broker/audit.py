"""Audit trail for broker operations.

Every broker-level operation attempt produces exactly one AuditEvent, which
is handed to the broker's sink. The default sink writes one structured log
record per event and counts events in Prometheus.

Audit records carry key names, never values.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from prometheus_client import Counter, Histogram

from libs.common.logging import get_trace_id, log_with_context

logger = logging.getLogger(__name__)

audit_events_total = Counter(
    "secret_broker_audit_events_total",
    "Secret broker audit events",
    ["operation", "source", "outcome"],
)
audit_handler_failures_total = Counter(
    "secret_broker_audit_handler_failures_total",
    "Audit handlers that raised while receiving an event",
)
backend_latency_seconds = Histogram(
    "secret_broker_backend_latency_seconds",
    "Latency of backend store calls made by the broker",
    ["operation"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class AuditOperation(str, Enum):
    GET = "get"
    SET = "set"
    DELETE = "delete"
    ROTATE = "rotate"
    WARMUP = "warmup"
    CLEAR = "clear"


class AuditSource(str, Enum):
    CACHE = "cache"
    BACKEND = "backend"


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of one broker operation attempt."""

    operation: AuditOperation
    secret_key: str
    source: AuditSource
    success: bool
    error: str | None = None
    actor: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    trace_id: str | None = field(default_factory=get_trace_id)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation.value,
            "secret_key": self.secret_key,
            "source": self.source.value,
            "success": self.success,
        }
        if self.error is not None:
            record["error"] = self.error
        if self.actor is not None:
            record["actor"] = self.actor
        if self.trace_id is not None:
            record["trace_id"] = self.trace_id
        return record


AuditHandler = Callable[[AuditEvent], None]


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Write each event as a structured log record and count it."""

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self._logger = audit_logger or logger

    def emit(self, event: AuditEvent) -> None:
        audit_events_total.labels(
            operation=event.operation.value,
            source=event.source.value,
            outcome="success" if event.success else "failure",
        ).inc()
        level = "INFO" if event.success else "WARNING"
        log_with_context(self._logger, level, "secret_audit", **event.to_record())


class AuditTrail:
    """
    Fan an event out to a primary sink and any registered handlers.

    A handler that raises is logged and skipped; it never fails the broker
    operation or prevents delivery to the remaining handlers.
    """

    def __init__(self, sink: AuditSink | None = None) -> None:
        self._sink: AuditSink = sink or LoggingAuditSink()
        self._handlers: list[AuditHandler] = []

    def add_handler(self, handler: AuditHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: AuditHandler) -> None:
        self._handlers.remove(handler)

    def emit(self, event: AuditEvent) -> None:
        for deliver in (self._sink.emit, *self._handlers):
            try:
                deliver(event)
            except Exception:
                audit_handler_failures_total.inc()
                logger.exception(
                    "audit_handler_failed",
                    extra={
                        "operation": event.operation.value,
                        "secret_key": event.secret_key,
                    },
                )
