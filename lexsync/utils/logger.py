"""
Centralized logging configuration.
Provides structured logging for sync audit trails, performance monitoring, and debugging.
"""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "lexsync"


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Converts log records to JSON format for easy parsing and analysis.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, 'extra_data', None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry["process_id"] = record.process

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextFormatter(logging.Formatter):
    """Console formatter that appends structured context as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra_data = getattr(record, 'extra_data', None)
        if not extra_data:
            return base
        context = " ".join(f"{k}={v}" for k, v in extra_data.items())
        return f"{base} | {context}"


class StructuredLogger:
    """
    Wrapper around standard logger to provide structured logging methods.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, **kwargs):
        """Log with extra structured data."""
        exc_info = kwargs.pop("exc_info", False)
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={'extra_data': extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)

    def detail(self, message: str, **kwargs):
        """Verbose sync detail: INFO while the sync log toggle is on, DEBUG otherwise."""
        level = logging.INFO if sync_log_toggle.is_enabled else logging.DEBUG
        self._log_with_extra(level, message, **kwargs)


class SyncLogToggle:
    """Process-wide switch for verbose payload/response logging in the sync pipeline."""

    def __init__(self) -> None:
        self.is_enabled = False

    def enable(self) -> dict:
        self.is_enabled = True
        return self.status()

    def disable(self) -> dict:
        self.is_enabled = False
        return self.status()

    def status(self) -> dict:
        return {"isEnabled": self.is_enabled}


sync_log_toggle = SyncLogToggle()


def monthly_log_file(log_dir: str, when: Optional[datetime] = None) -> str:
    """Log file path keyed by month, e.g. ``logs/lexsync_2024-05.log``."""
    when = when or datetime.now(timezone.utc)
    return str(Path(log_dir) / f"lexsync_{when:%Y-%m}.log")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Setup application logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        enable_console: Whether to log to console
    """

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "()": ContextFormatter,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            ROOT_LOGGER_NAME: {
                "level": log_level,
                "handlers": [],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": [],
                "propagate": False
            },
            "apscheduler": {
                "level": "WARNING",
                "handlers": [],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        for logger_cfg in config["loggers"].values():
            logger_cfg["handlers"].append("console")
        config["root"]["handlers"].append("console")

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        for logger_cfg in config["loggers"].values():
            logger_cfg["handlers"].append("file")
        config["root"]["handlers"].append("file")

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    request_id: Optional[str] = None
) -> None:
    """
    Log business events for audit trails.

    Args:
        event_type: Type of business event (e.g., 'shipments_created', 'daily_sync_completed')
        details: Event-specific details
        request_id: Request ID for tracing
    """
    audit_logger = get_logger("audit")
    audit_logger.info(
        f"Business event: {event_type}",
        event_type=event_type,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log performance metrics.

    Args:
        operation: Operation name
        duration_ms: Duration in milliseconds
        additional_data: Additional context data
    """
    perf_logger = get_logger("performance")
    data = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)

    perf_logger.info(
        f"Performance: {operation}",
        operation=operation,
        **data
    )
