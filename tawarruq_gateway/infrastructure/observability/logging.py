"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "tawarruq-gateway"

logger = logging.getLogger("tawarruq_gateway.processing")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def __init__(self, *args, service_name: str = SERVICE_NAME, **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = SERVICE_NAME) -> None:
    """Configure structured JSON logging"""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        service_name=service_name,
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)


def log_step(
    application_id: str,
    step: str,
    outcome: str,
    new_status: str,
    message: str,
    error_kind: Optional[str] = None,
    **fields: Any,
) -> None:
    """Log structured outcome of an orchestrator step"""
    extra = {
        "application_id": application_id,
        "step": step,
        "outcome": outcome,
        "new_status": new_status,
        **fields,
    }
    if error_kind:
        extra["error_kind"] = error_kind

    if outcome == "success":
        logger.info(message, extra=extra)
    elif outcome == "precondition":
        logger.warning(message, extra=extra)
    else:
        logger.error(message, extra=extra)
