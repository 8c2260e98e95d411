"""
Logging Utilities

Provides logging for the storage core with support for:
- Configurable log levels (DEBUG, INFO, WARNING, ERROR)
- Optional file output
- Debug mode with verbose output
- Masking of credentials (keys, secrets, tokens, Authorization headers)

Log Format:
    %(asctime)s - %(name)s - %(levelname)s - %(message)s

Environment:
    CLOUDSHUTTLE_LOG_LEVEL: Default level (INFO)
    CLOUDSHUTTLE_LOG_FILE: Optional log file path
    CLOUDSHUTTLE_DEBUG: "true"/"1"/"yes" enables debug output

Loggers:
    - cloudshuttle.*: Main logger hierarchy
    - cloudshuttle.providers.*: One logger per backend adapter
"""

import logging
import os
import re
import sys
from typing import Any, Dict, Iterable, Optional

ROOT_LOGGER = "cloudshuttle"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LOG_LEVEL = os.getenv("CLOUDSHUTTLE_LOG_LEVEL", "INFO").upper()
_LOG_FILE = os.getenv("CLOUDSHUTTLE_LOG_FILE", None)
_DEBUG_MODE = os.getenv("CLOUDSHUTTLE_DEBUG", "").lower() in ("true", "1", "yes")

_root_configured = False
_root_logger = None

SENSITIVE_FIELDS = (
    "secret_access_key",
    "access_key_secret",
    "secret_key",
    "secret_id",
    "access_key_id",
    "token",
    "password",
)


class SensitiveDataMasker:
    """Masks credentials in log messages and dictionaries."""

    PATTERNS = [
        (re.compile(r"(Authorization['\":\s]*)(Basic|Bearer)\s+[^\s'\",}]+", re.IGNORECASE), r"\1\2 ***"),
        (re.compile(r"((?:secret|token|password)[\w-]*['\"]?\s*[:=]\s*['\"]?)[^\s'\",}]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(X-Amz-Signature=|Signature=|sign=)[^&\s]+", re.IGNORECASE), r"\1***"),
    ]

    @staticmethod
    def mask_string(value: Any) -> str:
        """
        Mask a sensitive value, keeping the first 3 and last character.

        Args:
            value: The value to mask

        Returns:
            Masked value
        """
        if not isinstance(value, str):
            return "***"
        if len(value) <= 4:
            return "*" * len(value)
        return value[:3] + "*" * (len(value) - 4) + value[-1]

    @staticmethod
    def mask_dict(data: Dict[str, Any], sensitive_fields: Iterable[str] = SENSITIVE_FIELDS) -> Dict[str, Any]:
        """Copy of ``data`` with sensitive fields masked."""
        fields = set(sensitive_fields)
        return {
            key: SensitiveDataMasker.mask_string(value) if key in fields and value else value
            for key, value in data.items()
        }

    @staticmethod
    def mask_message(message: str) -> str:
        """Mask credentials embedded in free text."""
        for pattern, replacement in SensitiveDataMasker.PATTERNS:
            message = pattern.sub(replacement, message)
        return message


class MaskingFilter(logging.Filter):
    """Logging filter that masks credentials in the formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = SensitiveDataMasker.mask_message(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _level() -> int:
    if _DEBUG_MODE:
        return logging.DEBUG
    return getattr(logging, _LOG_LEVEL, logging.INFO)


def _configure_root_logger() -> None:
    """
    Configure the root cloudshuttle logger.

    Sets up handlers for console and optionally file output.
    Only runs once until setup_logging resets it.
    """
    global _root_configured, _root_logger

    if _root_configured:
        return

    _root_logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(_root_logger.handlers):
        _root_logger.removeHandler(handler)
    _root_logger.setLevel(_level())

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    masking = MaskingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(_level())
    console_handler.addFilter(masking)
    _root_logger.addHandler(console_handler)

    if _LOG_FILE:
        try:
            os.makedirs(os.path.dirname(_LOG_FILE) or ".", exist_ok=True)
            file_handler = logging.FileHandler(_LOG_FILE)
            file_handler.setFormatter(formatter)
            file_handler.setLevel(_level())
            file_handler.addFilter(masking)
            _root_logger.addHandler(file_handler)
        except OSError as e:
            _root_logger.warning(f"Failed to create log file {_LOG_FILE}: {e}")

    _root_configured = True


def get_logger(name: str = ROOT_LOGGER, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger below the cloudshuttle hierarchy.

    Args:
        name: Logger name (e.g., 'cloudshuttle.cli')
        level: Optional log level override (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logging.Logger instance
    """
    _configure_root_logger()
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    debug: bool = False,
) -> logging.Logger:
    """
    Setup logging configuration.

    Should be called once at application startup, before creating loggers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); defaults to CLOUDSHUTTLE_LOG_LEVEL
        log_file: Optional file path; defaults to CLOUDSHUTTLE_LOG_FILE
        debug: Enable debug mode (verbose output)

    Returns:
        Configured root logger

    Example:
        >>> setup_logging(level='DEBUG', log_file='cloudshuttle.log')
    """
    global _root_configured, _LOG_LEVEL, _LOG_FILE, _DEBUG_MODE

    _root_configured = False
    if level is not None:
        _LOG_LEVEL = level.upper()
    if log_file is not None:
        _LOG_FILE = log_file
    _DEBUG_MODE = debug or os.getenv("CLOUDSHUTTLE_DEBUG", "").lower() in ("true", "1", "yes")

    _configure_root_logger()
    return _root_logger
