"""JSON log formatter with secret redaction.

Every record is rendered as one JSON object:

    {
        "timestamp": "2026-03-02T10:30:00.000Z",
        "level": "INFO",
        "service": "secret-broker",
        "trace_id": "abc123-def456",
        "message": "Secret updated in Kubernetes",
        "context": {"secret_name": "database/url", "namespace": "nexus"}
    }

Context fields whose names look like they hold secret material (``value``,
``password``, ``token``, ``private_key`` ...) are replaced with ``"***"``
before serialization. Key names such as ``secret_name`` are left intact.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

REDACTED = "***"

SENSITIVE_FIELDS = frozenset(
    {
        "value",
        "secret",
        "secret_value",
        "password",
        "token",
        "private_key",
        "api_key",
        "authorization",
        "credentials",
    }
)
SENSITIVE_SUFFIXES = ("_password", "_token", "_secret", "_private_key")

_RESERVED_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "asctime",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "trace_id",
        "context",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def is_sensitive_field(name: str) -> bool:
    lowered = name.lower().replace("-", "_")
    return lowered in SENSITIVE_FIELDS or lowered.endswith(SENSITIVE_SUFFIXES)


def redact(data: Any) -> Any:
    """Recursively replace values of sensitive fields with '***'."""
    if isinstance(data, dict):
        return {
            key: REDACTED if is_sensitive_field(str(key)) else redact(item)
            for key, item in data.items()
        }
    if isinstance(data, list | tuple):
        return [redact(item) for item in data]
    return data


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON with redacted context.

    Attributes:
        service_name: Name of the service emitting logs
        include_context: Whether to include extra context fields

    Example:
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(JSONFormatter(service_name="secret-broker"))
        >>> logger.info("Secret loaded", extra={"secret_name": "auth/jwt-secret"})
    """

    def __init__(
        self, service_name: str, include_context: bool = True, *args: Any, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "trace_id": getattr(record, "trace_id", None),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if self.include_context:
            context = self._extract_context(record)
            if context:
                log_entry["context"] = context

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self._format_exception(record.exc_info),
            }

        log_entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_entry, default=str)

    def _format_timestamp(self, created: float) -> str:
        """ISO 8601 in UTC with millisecond precision, e.g. '2023-10-21T10:30:00.000Z'."""
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _extract_context(self, record: logging.LogRecord) -> dict[str, Any] | None:
        """Context from ``extra={"context": {...}}`` or, failing that, all extra fields."""
        context = getattr(record, "context", None)
        if context and isinstance(context, dict):
            return redact(dict(context))  # type: ignore[no-any-return]

        extra = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_FIELDS}
        return redact(extra) if extra else None  # type: ignore[no-any-return]

    def _format_exception(
        self,
        exc_info: tuple[type[BaseException] | None, BaseException | None, TracebackType | None],
    ) -> str:
        return "".join(traceback.format_exception(*exc_info))
