"""
Logging setup and secret redaction helpers.
"""
import logging
import os
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

SENSITIVE_KEYS = (
    "authorization",
    "accesstoken",
    "access_token",
    "refreshtoken",
    "refresh_token",
    "password",
    "currentpassword",
    "newpassword",
    "newpasswordconfirm",
    "code",
)


def configure_logging(level: str = "info", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the root logger

    Args:
        level: Log level name (debug, info, warning, error)
        log_file: Optional file that receives a copy of every record (append mode)

    Returns:
        The configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # Clear existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(os.path.abspath(log_file), mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root_logger


def redact(value: Optional[str], visible: int = 4) -> str:
    """Mask a secret, keeping only a short prefix for correlation"""
    if not value:
        return "<none>"
    if len(value) <= visible * 2:
        return "[REDACTED]"
    return f"{value[:visible]}...[REDACTED]"


def redact_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a JSON body with secret fields masked"""
    cleaned: Dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in SENSITIVE_KEYS:
            cleaned[key] = "[REDACTED]"
        elif isinstance(value, dict):
            cleaned[key] = redact_payload(value)
        else:
            cleaned[key] = value
    return cleaned
