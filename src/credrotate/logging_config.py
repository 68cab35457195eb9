"""Centralized logging configuration for credrotate.

Provides:
- Console output
- Optional rotating transcript file (--log-path)
- Redaction of in-flight secret values from every emitted record
"""

import logging
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

REDACTED = "[REDACTED]"

# value -> number of holders; the same value may be in flight for several accounts
_active_secrets: dict[str, int] = {}
_secrets_lock = threading.Lock()


def register_secret(value: str) -> None:
    """Mark a secret value as in-flight so log records containing it are redacted."""
    if not value:
        return
    with _secrets_lock:
        _active_secrets[value] = _active_secrets.get(value, 0) + 1


def unregister_secret(value: str) -> None:
    with _secrets_lock:
        remaining = _active_secrets.get(value, 0) - 1
        if remaining > 0:
            _active_secrets[value] = remaining
        else:
            _active_secrets.pop(value, None)


def redact(text: str) -> str:
    """Replace any in-flight secret value in text."""
    with _secrets_lock:
        values = sorted(_active_secrets, key=len, reverse=True)
    for value in values:
        if value in text:
            text = text.replace(value, REDACTED)
    return text


class SecretRedactionFilter(logging.Filter):
    """Rewrites records whose rendered message contains an in-flight secret."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(level: int = logging.INFO, log_path: Optional[Path] = None) -> logging.Logger:
    """Configure the credrotate logger hierarchy.

    Args:
        level: The logging level (default: INFO).
        log_path: Optional transcript file; rotated at MAX_LOG_SIZE.

    Returns:
        The configured top-level "credrotate" logger.
    """
    logger = logging.getLogger("credrotate")
    logger.setLevel(level)

    # Reconfiguring replaces handlers so repeated CLI invocations don't stack them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    redaction = SecretRedactionFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(redaction)
    logger.addHandler(console_handler)

    if log_path is not None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redaction)
        logger.addHandler(file_handler)

    return logger
