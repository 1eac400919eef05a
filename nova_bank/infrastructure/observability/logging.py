"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from nova_bank.config import settings

# Never written to logs even if a caller passes them in ``extra``
REDACTED_FIELDS = frozenset({"card_number", "cvv", "credential_id"})

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


class BankJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records stamped with UTC time, level, and service name; card credentials masked"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        for key in REDACTED_FIELDS.intersection(log_record):
            log_record[key] = "***"
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through one JSON handler on stdout"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(BankJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_operation(
    user_id: str | None,
    operation: str,
    success: bool,
    duration_ms: float,
    error_code: str | None = None,
    amount_cents: int | None = None,
) -> None:
    """Log structured account operation outcome"""
    logging.getLogger("nova_bank.operations").info(
        "Operation completed",
        extra={
            "user_id": user_id,
            "step": "operation_complete",
            "operation": operation,
            "outcome": "success" if success else "failure",
            "error_code": error_code,
            "amount_cents": amount_cents,
            "duration_ms": duration_ms,
        },
    )


def log_tool_call(
    user_id: str | None,
    tool: str,
    outcome: str,
    round_index: int,
) -> None:
    """Log one tool call processed by the conversation orchestrator"""
    logging.getLogger("nova_bank.assistant").info(
        "Tool call processed",
        extra={
            "user_id": user_id,
            "step": "tool_call",
            "tool": tool,
            "outcome": outcome,
            "round": round_index,
        },
    )
