"""Centralized logging configuration for Media Concierge."""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Project root for the default log directory
PROJECT_ROOT = Path(__file__).parent.parent.parent
LOG_DIR = PROJECT_ROOT / "logs"

# Loggers whose records also go to resolution.log
RESOLUTION_LOGGER = "media_concierge.services"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Structured fields passed via extra={"extra_data": {...}}
        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound context into every record's extra_data."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})
        extra["extra_data"] = {**self.extra, **extra.get("extra_data", {})}
        kwargs["extra"] = extra
        return msg, kwargs


@dataclass(frozen=True)
class LoggingConfig:
    """Logging settings.

    Attributes:
        level: Root log level name.
        enable_console: Log human-readable lines to stdout.
        enable_file: Write rotating JSON log files.
        log_dir: Directory for log files.
        max_bytes: Maximum size per log file before rotation.
        backup_count: Rotated files to keep.
    """

    level: str = "INFO"
    enable_console: bool = True
    enable_file: bool = True
    log_dir: Path = LOG_DIR
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create config from environment variables.

        Environment variables:
            LOG_LEVEL: Root level (default: INFO)
            LOG_TO_FILE: "false" disables the JSON files
            LOG_DIR: Directory for the JSON files (default: <project>/logs)

        Returns:
            LoggingConfig from environment.
        """
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO"),
            enable_file=os.getenv("LOG_TO_FILE", "true").lower() in ("1", "true", "yes"),
            log_dir=Path(os.getenv("LOG_DIR", str(LOG_DIR))),
        )


def _rotating_handler(
    config: LoggingConfig, filename: str, level: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        config.log_dir / filename,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for the application.

    Safe to call more than once; handlers from a previous call are replaced.

    Files (when enabled):
        media_concierge.log: every record, JSON
        errors.log: ERROR and above
        resolution.log: records from the resolution services

    Args:
        config: Logging settings. If None, loads them from the environment.
    """
    config = config or LoggingConfig.from_env()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    resolution_logger = logging.getLogger(RESOLUTION_LOGGER)
    resolution_logger.handlers.clear()

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(console_handler)

    if config.enable_file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        json_formatter = JSONFormatter()

        root_logger.addHandler(
            _rotating_handler(config, "media_concierge.log", logging.DEBUG, json_formatter)
        )
        root_logger.addHandler(
            _rotating_handler(config, "errors.log", logging.ERROR, json_formatter)
        )
        resolution_logger.addHandler(
            _rotating_handler(config, "resolution.log", logging.DEBUG, json_formatter)
        )


def get_logger(name: str, **context: Any) -> ContextLogger:
    """Get a logger with optional context.

    Args:
        name: Logger name (typically __name__).
        **context: Additional context to include in all log messages.

    Returns:
        ContextLogger with the specified context.
    """
    logger = logging.getLogger(name)
    return ContextLogger(logger, context)
