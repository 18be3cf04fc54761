from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())

# Extras that are copied into the "fields" object of each JSON line.
_KNOWN_FIELDS = {
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "job_id",
    "job_type",
    "status",
    "error",
    "event_name",
    "lead_id",
    "campaign_id",
    "pipeline_id",
    "stage_id",
    "from_stage_id",
    "row",
    "summary",
}
_MAX_ERROR_LENGTH = 500


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def _collect_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
    }
    error_value = fields.get("error")
    if isinstance(error_value, str):
        fields["error"] = error_value[:_MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = _collect_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level_name: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_realty_configured", False):
        return

    resolved_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, resolved_name, logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._realty_configured = True  # type: ignore[attr-defined]
