"""Structured JSON logging with trace IDs and secret redaction.

Usage:
    # At process startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="secret-broker", log_level="INFO")

    # Per operation
    from libs.common.logging import LogContext, get_logger, log_with_context
    logger = get_logger(__name__)
    with LogContext():
        log_with_context(logger, "INFO", "Rotating secret", secret_name="auth/jwt-secret")
"""

from libs.common.logging.config import (
    configure_logging,
    get_logger,
    log_with_context,
)
from libs.common.logging.context import (
    LogContext,
    clear_trace_id,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter, redact

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    "log_with_context",
    # Trace ID management
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "LogContext",
    # Formatter
    "JSONFormatter",
    "redact",
]
