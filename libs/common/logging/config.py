"""Process-wide logging setup.

Structured JSON to stdout with the current trace ID on every record.
Call configure_logging() once at startup (the operator CLI and any service
embedding the broker do this before creating the broker).

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="secret-broker", log_level="INFO")
    >>> logger.info("Broker starting", extra={"context": {"provider": "kv-store"}})
"""

import logging
import sys
from collections.abc import Iterable

from libs.common.logging.context import get_trace_id
from libs.common.logging.formatter import JSONFormatter

# Client libraries that log request lines (URLs, retries) at INFO
NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "botocore", "boto3", "urllib3", "hvac")


class TraceIDFilter(logging.Filter):
    """Copy the context trace ID onto every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Configure structured JSON logging for the process.

    Replaces any existing root handlers with a single stdout handler using
    JSONFormatter and TraceIDFilter. Client-library loggers listed in
    quiet_loggers are raised to WARNING.

    Args:
        service_name: Value of the "service" field (e.g., "secret-broker")
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to include the context dict in output
        quiet_loggers: Logger names to cap at WARNING

    Returns:
        Configured root logger

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(TraceIDFilter())
    root_logger.addHandler(handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger by name (typically __name__); root logger when name is None."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log a message with context fields under the "context" key.

    Example:
        >>> log_with_context(logger, "INFO", "Secret rotated", secret_name="auth/jwt-secret")
        # Output includes: "context": {"secret_name": "auth/jwt-secret"}
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
