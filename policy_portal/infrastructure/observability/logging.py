"""Structured JSON logging for the client runtime"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from policy_portal.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_aggregation(
    package_count: int,
    standalone_count: int,
    failed_packages: int,
    duration_ms: float,
) -> None:
    """Log structured aggregation outcome for analysis"""
    logging.getLogger("policy_portal.aggregation").info(
        "Aggregation completed",
        extra={
            "step": "aggregation_complete",
            "package_count": package_count,
            "standalone_count": standalone_count,
            "failed_packages": failed_packages,
            "duration_ms": duration_ms,
        },
    )
