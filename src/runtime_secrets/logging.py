"""Structured logging with secret redaction and provider tagging."""

import json
import logging
import re
import sys
from typing import Any, Dict

LOGGER_NAME = "runtime_secrets"

_logging_ensured = False


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with secret redaction."""

    def __init__(self, redact_secrets: bool = False):
        super().__init__()
        self.redact_secrets = redact_secrets
        # Patterns for common secret fields
        self.secret_patterns = [
            r'(password["\']?\s*[:=]\s*["\']?)([^"\'\s,}]+)',
            r'(token["\']?\s*[:=]\s*["\']?)([^"\'\s,}]+)',
            r'(api_key["\']?\s*[:=]\s*["\']?)([^"\'\s,}]+)',
            r'(secret["\']?\s*[:=]\s*["\']?)([^"\'\s,}]+)',
            r'(credential["\']?\s*[:=]\s*["\']?)([^"\'\s,}]+)',
        ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with optional secret redaction."""
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "provider"):
            log_data["provider"] = record.provider

        if hasattr(record, "event_type"):
            log_data["event_type"] = record.event_type

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        log_str = json.dumps(log_data, default=str)
        if self.redact_secrets:
            log_str = self.redact(log_str)
        return log_str

    def redact(self, text: str) -> str:
        """Mask values that look like credentials in an already rendered line."""
        for pattern in self.secret_patterns:
            text = re.sub(pattern, r"\1[REDACTED]", text, flags=re.IGNORECASE)
        return re.sub(r"[A-Za-z0-9+/=]{32,}", "[REDACTED]", text)


def setup_logging(
    level: str = "INFO",
    redact_secrets: bool = True,
) -> logging.Logger:
    """Set up structured JSON logging on stderr.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        redact_secrets: Whether to redact credential-looking values in logs

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredJSONFormatter(redact_secrets=redact_secrets))
    logger.addHandler(handler)
    return logger


def ensure_logging(level: str = "INFO") -> logging.Logger:
    """Install the JSON handler unless the host process already configured logging.

    Safe to call any number of times: only the first call can add a handler,
    and only when neither the package logger nor the root logger has one.

    Args:
        level: Log level used if a handler has to be installed

    Returns:
        Package logger instance
    """
    global _logging_ensured

    logger = logging.getLogger(LOGGER_NAME)
    if _logging_ensured:
        return logger
    _logging_ensured = True

    if logger.handlers or logging.getLogger().handlers:
        return logger
    return setup_logging(level=level)
