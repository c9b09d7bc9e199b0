import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"\b(?:\+?27[-.\s]?|0)\d{2}[-.\s]?\d{3}[-.\s]?\d{4}\b")
ADDRESS_RE = re.compile(
    r"\b\d{1,6}\s+[A-Za-z0-9.\-\s]+(?:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Lane|Ln|Way|Crescent|Cres|Close|Place|Pl)\b",
    re.IGNORECASE,
)
PII_KEYS = {"phone", "email", "address", "job_site_address"}
# Coordinates are truncated to roughly 1 km so logs cannot pinpoint a home.
COORDINATE_KEYS = {"lat", "lng", "latitude", "longitude"}
COORDINATE_PRECISION = 2
REQUEST_KEYS = ("request_id", "method", "path", "status_code", "latency_ms")


def redact_pii(value: str) -> str:
    value = EMAIL_RE.sub("[REDACTED_EMAIL]", value)
    value = PHONE_RE.sub("[REDACTED_PHONE]", value)
    value = ADDRESS_RE.sub("[REDACTED_ADDRESS]", value)
    return value


def _sanitize_value(value: Any, key: str | None = None) -> Any:
    if key and key.lower() in PII_KEYS:
        return "[REDACTED]"
    if key and key.lower() in COORDINATE_KEYS and isinstance(value, (int, float)):
        return round(float(value), COORDINATE_PRECISION)
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, list):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, dict):
        return {item_key: _sanitize_value(item_value, item_key) for item_key, item_value in value.items()}
    return value


class RedactingJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": redact_pii(str(record.getMessage())),
            "logger": record.name,
        }
        for key in REQUEST_KEYS:
            if hasattr(record, key):
                payload[key] = _sanitize_value(getattr(record, key), key)
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(_sanitize_value(record.extra))
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)
