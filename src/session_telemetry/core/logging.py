"""
Structured logging for the session telemetry pipeline.

Configures structlog with a console renderer for development and JSON output
for production, binds the active telemetry session to every log event, and
provides a timing decorator for collection passes.
"""

import logging
import logging.config
import sys
import time
from contextvars import ContextVar
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import structlog
from structlog.types import FilteringBoundLogger

# Context variable for the active recording session
session_id_context: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


class TelemetryLogger:
    """Logger for the pipeline's own timing and delivery events."""

    def __init__(self, logger: FilteringBoundLogger):
        self.logger = logger

    def log_execution_time(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        **kwargs: Any
    ) -> None:
        """Log operation execution time."""
        self.logger.debug(
            "Operation timing",
            event_type="timing",
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            **kwargs
        )

    def log_callback_failure(
        self,
        channel: str,
        error: BaseException,
        **kwargs: Any
    ) -> None:
        """Log a subscriber callback that raised during delivery."""
        self.logger.error(
            "Subscriber callback failed",
            event_type="callback_failure",
            channel=channel,
            error=str(error),
            error_class=type(error).__name__,
            **kwargs
        )


def add_context_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the active session id and a timestamp to log events."""
    session_id = session_id_context.get()
    if session_id:
        event_dict.setdefault("session_id", session_id)

    event_dict["timestamp"] = time.time()

    return event_dict


def setup_logging(
    log_level: str = "INFO",
    environment: str = "development",
    log_file: Optional[Path] = None
) -> None:
    """
    Set up structured logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment name (development, testing, production)
        log_file: Optional log file path
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if environment == "production":
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=environment == "development")
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter"
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level.upper(),
                "formatter": "json" if environment == "production" else "standard",
                "stream": sys.stdout
            }
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"]
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level.upper(),
            "formatter": "json",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logging_config["root"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (defaults to caller's module name)

    Returns:
        FilteringBoundLogger: Configured logger instance
    """
    if name is None:
        import inspect
        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", "session_telemetry")

    return structlog.get_logger(name)


def get_telemetry_logger(name: Optional[str] = None) -> TelemetryLogger:
    """Get a logger for pipeline timing and delivery events."""
    return TelemetryLogger(get_logger(name))


def set_session_context(session_id: Optional[str]) -> None:
    """Bind the active recording session to subsequent log events."""
    session_id_context.set(session_id)


def log_execution_time(operation_name: Optional[str] = None):
    """
    Decorator to log function execution time.

    Args:
        operation_name: Optional operation name (defaults to function name)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            operation = operation_name or f"{func.__module__}.{func.__name__}"
            logger = get_telemetry_logger(func.__module__)

            try:
                result = func(*args, **kwargs)
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=True)
                return result
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=False, error=str(e))
                raise

        return wrapper
    return decorator


__all__ = [
    "setup_logging",
    "get_logger",
    "get_telemetry_logger",
    "set_session_context",
    "log_execution_time",
    "TelemetryLogger",
]
