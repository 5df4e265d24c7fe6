from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.core.config import get_settings


_HTTP_FIELDS = {"method", "path", "status_code", "duration_ms"}
_SECURITY_FIELDS = {
    "subject_id",
    "role",
    "organization_id",
    "resource",
    "action",
    "scope",
    "outcome",
    "reason",
}
_LIFECYCLE_FIELDS = {"state", "event_name", "error"}
_KNOWN_FIELDS = _HTTP_FIELDS | _SECURITY_FIELDS | _LIFECYCLE_FIELDS

# Never emitted even if a caller passes them as extras.
_SECRET_FIELDS = {"password", "password_hash", "token", "authorization"}
_ERROR_LIMIT = 500


def _stamp_correlation_id(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_correlation_id(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    return _stamp_correlation_id(_DEFAULT_RECORD_FACTORY(*args, **kwargs))


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: getattr(record, key)
        for key in sorted(_KNOWN_FIELDS - _SECRET_FIELDS)
        if key in record.__dict__
    }
    error = fields.get("error")
    if isinstance(error, str):
        fields["error"] = error[:_ERROR_LIMIT]
    return fields


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only allow-listed extras reach the ``fields`` block."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_workshop_configured", False):
        return

    level = logging.getLevelName(get_settings().log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._workshop_configured = True  # type: ignore[attr-defined]
