"""
Logging setup and credential masking.

NEVER log raw API keys or secrets. Headers and params that carry
credentials go through mask_headers / mask_params before logging.
"""

import json
import logging
import re
import sys
from typing import Any, Dict, Optional


# Header names that should be masked
SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "api-key",
    "aevo-key",
    "aevo-secret",
    "secret",
    "signature",
}

# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "api_secret",
    "secret",
    "password",
    "signature",
    "token",
    "access_token",
}


def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only the first few chars."""
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Mask sensitive headers."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive parameters, recursing into nested dicts."""
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str) -> str:
    """Mask sensitive query string values in a URL."""
    if not url:
        return url
    for param in SENSITIVE_PARAMS:
        pattern = re.compile(f"({param}=)([^&]+)", re.IGNORECASE)
        url = pattern.sub(lambda m: f"{m.group(1)}***", url)
    return url


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    request_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up root logging.

    Args:
        level: Log level name
        log_format: "json" or "text"
        request_id: Optional id stamped on every line

    Returns:
        The package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "request_id": request_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {request_id or '-'} | %(message)s"
        )

    # stdout carries exported data
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("accounting_events")
