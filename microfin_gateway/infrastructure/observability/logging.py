"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict
from pythonjsonlogger.json import JsonFormatter

from microfin_gateway.config import settings


class CustomJsonFormatter(JsonFormatter):
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

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_repayment(
    request_id: str,
    repayment_id: str,
    loan_id: str,
    amount: Decimal,
    allocation_count: int,
    unallocated: Decimal,
    duration_ms: float,
) -> None:
    """Log structured repayment outcome for reconciliation"""
    logging.info(
        "Repayment recorded",
        extra={
            "request_id": request_id,
            "repayment_id": repayment_id,
            "loan_id": loan_id,
            "step": "repayment_recorded",
            "amount": str(amount),
            "allocation_count": allocation_count,
            "unallocated_amount": str(unallocated),
            "duration_ms": duration_ms,
        },
    )
