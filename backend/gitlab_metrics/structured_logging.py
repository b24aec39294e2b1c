"""
Structured logging configuration.

Module loggers attach a context map via ``extra={"context": {...}}``.
JSON output renders that map with credentials redacted; the plain format
keeps log lines short for interactive use.
"""

import json
import logging
from datetime import datetime, timezone

SENSITIVE_KEYS = ("token", "password", "secret", "authorization", "apikey", "api_key")
REDACTED = "[REDACTED]"


def redact(value):
    """Copy of value with any sensitive-looking key masked, at any depth."""
    if isinstance(value, dict):
        return {
            key: REDACTED if any(s in str(key).lower() for s in SENSITIVE_KEYS) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for machine-readable output."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
        }

        context = getattr(record, "context", None)
        if context:
            log_entry["context"] = redact(context)

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_structured_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure root logging for the metrics service.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, use JSON format; otherwise use a simple format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_output:
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter())
        logging.root.handlers = [handler]
        logging.root.setLevel(log_level)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            force=True,
        )
