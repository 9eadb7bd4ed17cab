"""
Entitlements - Structured Logging Configuration

Configures structured JSON logging for the vesting and reward engines:
- JSON format for easy parsing and aggregation
- Log rotation to prevent disk space issues
- Console and file handlers

Usage:
    from entitlements.core.logging_config import setup_logging

    logger = setup_logging(
        name="entitlements.blockchain",
        log_file="/var/log/entitlements/engines.json",
        level="INFO"
    )

    logger.info("Round published", extra={"event": "distributor.round_published", "round": 3})
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger

from . import config


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Enhanced JSON formatter with additional context fields.

    Adds timestamp, environment, and other metadata to all log records.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "entitlements",
    ):
        """
        Initialize custom JSON formatter.

        Args:
            fmt: Log format string
            timestamp: Whether to add timestamps
            environment: Environment name (development, staging, production)
            service_name: Service name for context
        """
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or config.ENVIRONMENT
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "entitlements",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
    environment: Optional[str] = None,
    enable_console: bool = True,
    max_bytes: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Setup structured JSON logging.

    Args:
        name: Logger name (typically package or module name)
        log_file: Path to JSON log file (defaults to ENTITLEMENTS_LOG_FILE)
        level: Logging level (defaults to ENTITLEMENTS_LOG_LEVEL)
        environment: Environment identifier (defaults to ENTITLEMENTS_ENVIRONMENT)
        enable_console: Whether to log to console
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    level = (level or config.LOG_LEVEL).upper()
    log_file = log_file if log_file is not None else config.LOG_FILE

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp=True,
        environment=environment,
        service_name=name.split(".")[0],
    )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setLevel(getattr(logging, level))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning("Could not create file handler for %s: %s", log_file, e)

    return logger


def get_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Get or create a logger with standard configuration.

    Only configures the logger if it has no handlers yet.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logging(name=name, log_file=log_file, level=level)

    return logger


# ==================== LOGGING CONFIGURATION PRESETS ====================

def setup_vesting_logging(environment: Optional[str] = None) -> logging.Logger:
    """Setup logging for the vesting schedule engine."""
    return setup_logging(name="entitlements.blockchain.vesting_manager", environment=environment)


def setup_distributor_logging(environment: Optional[str] = None) -> logging.Logger:
    """Setup logging for the round-based reward distributor."""
    return setup_logging(name="entitlements.blockchain.reward_distributor", environment=environment)
