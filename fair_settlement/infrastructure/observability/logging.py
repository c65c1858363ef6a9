"""
Structured JSON logging for production observability.

The settlement services only emit records; they never touch handlers.
A process hosting them calls setup_logging() once at startup, before the
first SettlementService is used, to install the JSON handler on the root
logger at settings.log_level.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from fair_settlement.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured JSON logging; level defaults to settings.log_level"""
    logger = logging.getLogger()
    logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement(
    operation: str,
    actor_id: str,
    purchase_id: str,
    installment_id: Optional[str],
    purchase_status: str,
    amount_cents: int,
    duration_ms: float,
) -> None:
    """Log structured settlement outcome for analysis"""
    logging.getLogger("fair_settlement.settlement").info(
        "Settlement completed",
        extra={
            "operation": operation,
            "actor_id": actor_id,
            "purchase_id": purchase_id,
            "installment_id": installment_id,
            "purchase_status": purchase_status,
            "amount_cents": amount_cents,
            "duration_ms": duration_ms,
        },
    )
