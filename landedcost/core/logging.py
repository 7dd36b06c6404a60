"""
JSON logging for the API and the worker.

Secrets and inline image payloads never reach the log stream: message text is
scrubbed by pattern, structured details by key, and long free-text values
(supplier replies, label text) are clipped.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from landedcost.core.config import settings

REDACTED = "***REDACTED***"
MAX_DETAIL_CHARS = 500

_SECRET_IN_TEXT = re.compile(
    r'(password|secret|token|api_key|apikey|authorization|credential)'
    r'[\"\']?\s*[:=]\s*[\"\']?[^\s,;\"\'}{]+',
    re.IGNORECASE,
)

_REDACT_KEYS = frozenset({
    "password", "secret", "secret_key", "api_key", "apikey", "token",
    "access_token", "authorization", "credential", "data_base64",
})

# Record attributes copied into the JSON entry when a caller passes them via ``extra``
_CONTEXT_FIELDS = ("user_id", "action", "entity_type", "entity_id", "report_id", "job_id", "task_id")


def scrub(value: Any) -> Any:
    """Redact secret keys and clip long strings, recursively."""
    if isinstance(value, dict):
        return {k: REDACTED if k.lower() in _REDACT_KEYS else scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(v) for v in value]
    if isinstance(value, str) and len(value) > MAX_DETAIL_CHARS:
        return value[:MAX_DETAIL_CHARS] + "..."
    return value


def scrub_text(message: str) -> str:
    return _SECRET_IN_TEXT.sub(rf'\1={REDACTED}', message)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub_text(record.getMessage()),
        }
        entry.update({f: getattr(record, f) for f in _CONTEXT_FIELDS if hasattr(record, f)})
        if record.exc_info:
            entry["exception"] = scrub_text(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging():
    """Install the JSON handler on the root logger once per process."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Writes audit events to the ``audit`` logger alongside the AuditLog rows."""

    def __init__(self):
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        target = f" on {entity_type}:{entity_id}" if entity_type and entity_id is not None else ""
        suffix = f" - {json.dumps(scrub(details), default=str)}" if details else ""
        self.logger.info(
            f"AUDIT: {action}{target}{suffix}",
            extra={"user_id": user_id, "action": action, "entity_type": entity_type, "entity_id": entity_id},
        )


audit_logger = AuditLogger()
