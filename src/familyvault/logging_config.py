"""
Centralized logging configuration for familyvault.

Structured logging is provided by structlog. Every module gets its logger via
``get_logger(__name__)`` and logs snake_case event names with key/value context.
"""

import logging
import os
import sys
from typing import Any

import structlog

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level() -> int:
    """
    Get log level from the LOG_LEVEL environment variable.

    Returns:
        int: Log level constant from logging module, INFO when unset or unknown
    """
    return _LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)


def is_development_environment() -> bool:
    """Check if running in development environment."""
    return os.getenv("ENVIRONMENT", "development").lower() in ["development", "dev", "local", "test"]


def configure_structured_logging() -> None:
    """
    Configure structlog for the whole process.

    Development renders human readable console lines; any other environment
    renders one JSON object per line so the output can be shipped as-is.
    """
    log_level = get_log_level()
    is_dev = is_development_environment()

    logging.basicConfig(level=log_level, format="%(message)s", stream=sys.stderr)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.getLogger().setLevel(log_level)

    structlog.get_logger("familyvault.logging").info(
        "logging_configured",
        log_level=logging.getLevelName(log_level),
        environment="development" if is_dev else "production",
    )


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, usually ``__name__`` of the calling module

    Returns:
        structlog.BoundLogger: Logger instance
    """
    return structlog.get_logger(name or "familyvault")


def log_performance(operation: str, duration: float, **context: Any) -> None:
    """
    Log the duration of an operation.

    Args:
        operation: Name of the operation
        duration: Duration in seconds
        **context: Additional context information
    """
    get_logger("familyvault.performance").info(
        "performance_metric", operation=operation, duration_seconds=round(duration, 6), **context
    )


def log_user_action(user_id: str, action: str, **context: Any) -> None:
    """
    Log a user action for the audit trail.

    Args:
        user_id: Acting user
        action: Action performed
        **context: Additional context information
    """
    get_logger("familyvault.user_actions").info("user_action", user_id=user_id, action=action, **context)


def log_error(error: Exception, context: dict[str, Any] | None = None) -> None:
    """
    Log an error with structured context.

    Args:
        error: Exception that occurred
        context: Additional context information
    """
    error_context: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if context:
        error_context.update(context)

    get_logger("familyvault.errors").error("error_occurred", **error_context)


def log_security_event(event_type: str, user_id: str | None = None, **context: Any) -> None:
    """
    Log a security relevant event such as a denied access attempt.

    Args:
        event_type: Type of security event
        user_id: User identifier (if applicable)
        **context: Additional context information
    """
    get_logger("familyvault.security").warning("security_event", event_type=event_type, user_id=user_id, **context)


class LogContext:
    """Context manager binding structured context to a logger."""

    def __init__(self, logger: Any, **context: Any):
        self.logger = logger
        self.context = context
        self.bound_logger: Any = None

    def __enter__(self) -> Any:
        self.bound_logger = self.logger.bind(**self.context)
        return self.bound_logger

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None and self.bound_logger is not None:
            self.bound_logger.error(
                "context_exception", exception_type=exc_type.__name__, exception_message=str(exc_val)
            )


def log_context(logger: Any = None, **context: Any) -> LogContext:
    """
    Create a logging context manager.

    Args:
        logger: Logger to bind, defaults to the package logger
        **context: Context variables added to every message inside the block

    Returns:
        LogContext: Context manager for structured logging
    """
    return LogContext(logger or get_logger(), **context)
