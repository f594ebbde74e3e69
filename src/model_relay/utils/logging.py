"""
Structured logging utilities.

Provides JSON logging with request ID propagation and an audit logger for
vendor calls, model selection and dispatch events.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from model_relay.config import SERVER

# Context variable for request ID propagation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        json_format: Whether to use JSON formatting. Defaults to config.
    """
    log_level = getattr(logging, (level or SERVER.LOG_LEVEL).upper(), logging.INFO)
    use_json = SERVER.JSON_LOGS if json_format is None else json_format

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )

    root_logger.addHandler(console_handler)

    # Set third-party loggers to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class AuditLogger:
    """
    Specialized logger for relay events.

    Every event is emitted as a single structured record under the
    ``model_relay.audit`` logger so it can be filtered downstream.
    """

    def __init__(self) -> None:
        """Initialize audit logger."""
        self._logger = logging.getLogger("model_relay.audit")

    def _emit(self, level: int, message: str, event: str, **data: Any) -> None:
        self._logger.log(
            level,
            message,
            extra={"extra_data": {"event": event, **data}},
        )

    def log_vendor_call(
        self,
        vendor: str,
        operation: str,
        duration_ms: float,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        """
        Log a single HTTP call to a vendor.

        Args:
            vendor: Vendor identifier.
            operation: Model name or endpoint operation.
            duration_ms: Call duration in milliseconds.
            success: Whether the call returned a usable payload.
            status_code: HTTP status code if a response arrived.
            error: Error message if failed.
        """
        self._emit(
            logging.INFO,
            "Vendor call completed",
            "vendor_call",
            vendor=vendor,
            operation=operation,
            duration_ms=round(duration_ms, 2),
            success=success,
            status_code=status_code,
            error=error,
        )

    def log_task_classified(
        self,
        task_type: str,
        complexity: str,
        priority: str,
        estimated_tokens: int,
        source: str,
    ) -> None:
        """Log a task classification result."""
        self._emit(
            logging.INFO,
            "Task classified",
            "task_classified",
            task_type=task_type,
            complexity=complexity,
            priority=priority,
            estimated_tokens=estimated_tokens,
            source=source,
        )

    def log_model_selected(
        self,
        model_id: str,
        score: int,
        confidence: float,
        reasons: list[str],
    ) -> None:
        """Log the winning model of a selection pass."""
        self._emit(
            logging.INFO,
            "Model selected",
            "model_selected",
            model_id=model_id,
            score=score,
            confidence=confidence,
            reasons=reasons,
        )

    def log_dispatch_attempt(
        self,
        model_id: str,
        attempt_number: int,
        outcome: str,
        wait_before_retry_ms: int = 0,
        error: str | None = None,
    ) -> None:
        """
        Log one attempt of a resilient dispatch.

        Args:
            model_id: Model being invoked.
            attempt_number: 1-based attempt counter.
            outcome: success, transient or fatal.
            wait_before_retry_ms: Backoff applied before the next attempt.
            error: Error message for failed attempts.
        """
        level = logging.INFO if outcome == "success" else logging.WARNING
        self._emit(
            level,
            "Dispatch attempt",
            "dispatch_attempt",
            model_id=model_id,
            attempt_number=attempt_number,
            outcome=outcome,
            wait_before_retry_ms=wait_before_retry_ms,
            error=error,
        )

    def log_batch_complete(
        self,
        total: int,
        success_count: int,
        failure_count: int,
        batch_size: int,
        duration_ms: float,
    ) -> None:
        """Log completion of a multi-model batch dispatch."""
        self._emit(
            logging.INFO,
            "Batch dispatch completed",
            "batch_complete",
            total=total,
            success_count=success_count,
            failure_count=failure_count,
            batch_size=batch_size,
            duration_ms=round(duration_ms, 2),
        )

    def log_request_complete(
        self,
        path: str,
        status_code: int,
        response_time_ms: float,
    ) -> None:
        """Log completion of an API request."""
        self._emit(
            logging.INFO,
            "Request completed",
            "request_complete",
            path=path,
            status_code=status_code,
            response_time_ms=round(response_time_ms, 2),
        )


# Module-level audit logger instance
audit_logger = AuditLogger()
