"""
Secure logging utilities.

Provides a logging filter and formatter that mask GitHub credentials
before they reach a handler.
"""

import logging
import re
from typing import Any, Optional

PACKAGE_LOGGER = "github_compliance_monitor"

# Patterns for credentials that may end up in exception messages or URLs
SENSITIVE_PATTERNS = [
    # Classic and fine-grained GitHub tokens
    (r'(gh[pousr]_)[A-Za-z0-9]{20,}', r'\1****'),
    (r'(github_pat_)[A-Za-z0-9_]+', r'\1****'),

    # Authorization headers
    (r'(Bearer\s+)[A-Za-z0-9_\-\.]+', r'\1****'),
    (r'(token\s+)[A-Za-z0-9_\-\.]{20,}', r'\1****'),
    (r'(Authorization["\']?\s*:\s*["\']?)[^"\',}]+', r'\1****'),

    # Credentials embedded in URLs
    (r'(https?://)[^/@\s:]+(?::[^/@\s]+)?@', r'\1****@'),
]

_COMPILED_PATTERNS = [(re.compile(pattern, re.IGNORECASE), repl) for pattern, repl in SENSITIVE_PATTERNS]

SENSITIVE_KEYS = {"token", "authorization", "password", "secret", "private_key"}


def mask_sensitive_string(text: str) -> str:
    """Replace GitHub tokens, authorization values and URL credentials with ``****``."""
    if not text:
        return text
    for pattern, replacement in _COMPILED_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _mask_arg(value: Any) -> Any:
    if isinstance(value, str):
        return mask_sensitive_string(value)
    if isinstance(value, dict):
        return {
            k: "****" if str(k).lower() in SENSITIVE_KEYS else _mask_arg(v)
            for k, v in value.items()
        }
    return value


class SensitiveDataFilter(logging.Filter):
    """Logging filter that masks credentials in messages and arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_sensitive_string(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = _mask_arg(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(_mask_arg(arg) for arg in record.args)

        return True


class SecureFormatter(logging.Formatter):
    """Formatter that masks credentials in the final output, tracebacks included."""

    def format(self, record: logging.LogRecord) -> str:
        return mask_sensitive_string(super().format(record))


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_secure_logging(
    level: int | str = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Logging level (name or number)
        log_file: Also write to this file
        format_string: Log record format

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    formatter = SecureFormatter(format_string or DEFAULT_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(SensitiveDataFilter())
        logger.addHandler(handler)

    return logger


def get_secure_logger(name: str) -> logging.Logger:
    """Module logger with the credential filter attached (once)."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, SensitiveDataFilter) for f in logger.filters):
        logger.addFilter(SensitiveDataFilter())

    return logger
