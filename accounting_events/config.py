"""
Accounting Events - Configuration.

============================================================
CONFIGURATION
============================================================
Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honoured)
- YAML config file

Environment variables:
- AE_MAX_PAGES
- AE_REQUEST_TIMEOUT
- AE_MAX_RETRIES
- AE_RETRY_BACKOFF
- AE_USER_AGENT
- AE_ENABLED_SOURCES      comma separated source ids
- AE_MODE_OVERRIDES       comma separated id=mode pairs

The configuration is read once at start-up and handed to the
service. Nothing mutates it afterwards.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class ExportConfig:
    """Runtime configuration for fetching and exporting events."""

    # Per-source resource bound, identical alone or inside a batch
    max_pages: int = 50

    # Scoped to one network call, never to a whole batch
    request_timeout_seconds: float = 30.0

    # Transient failures only (network, 5xx)
    max_retries: int = 1
    retry_backoff_base: float = 1.5

    user_agent: str = "accounting-events/1.0"

    # Empty means every registered source
    enabled_sources: List[str] = field(default_factory=list)

    # source id -> mode name
    mode_overrides: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "ExportConfig":
        """Load configuration from environment variables."""
        load_dotenv(dotenv_path)
        config = cls()

        if os.getenv("AE_MAX_PAGES"):
            config.max_pages = int(os.getenv("AE_MAX_PAGES"))
        if os.getenv("AE_REQUEST_TIMEOUT"):
            config.request_timeout_seconds = float(os.getenv("AE_REQUEST_TIMEOUT"))
        if os.getenv("AE_MAX_RETRIES"):
            config.max_retries = int(os.getenv("AE_MAX_RETRIES"))
        if os.getenv("AE_RETRY_BACKOFF"):
            config.retry_backoff_base = float(os.getenv("AE_RETRY_BACKOFF"))
        if os.getenv("AE_USER_AGENT"):
            config.user_agent = os.getenv("AE_USER_AGENT")
        if os.getenv("AE_ENABLED_SOURCES"):
            config.enabled_sources = [
                s.strip() for s in os.getenv("AE_ENABLED_SOURCES").split(",") if s.strip()
            ]
        if os.getenv("AE_MODE_OVERRIDES"):
            config.mode_overrides = _parse_pairs(os.getenv("AE_MODE_OVERRIDES"))

        # Re-run checks on the loaded values
        config.__post_init__()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ExportConfig":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        config = cls(
            max_pages=data.get("max_pages", 50),
            request_timeout_seconds=data.get("request_timeout_seconds", 30.0),
            max_retries=data.get("max_retries", 1),
            retry_backoff_base=data.get("retry_backoff_base", 1.5),
            user_agent=data.get("user_agent", "accounting-events/1.0"),
            enabled_sources=list(data.get("enabled_sources") or []),
            mode_overrides=dict(data.get("modes") or {}),
        )
        logger.info(f"Loaded configuration from {path}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_pages": self.max_pages,
            "request_timeout_seconds": self.request_timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_base": self.retry_backoff_base,
            "user_agent": self.user_agent,
            "enabled_sources": list(self.enabled_sources),
            "modes": dict(self.mode_overrides),
        }


def _parse_pairs(raw: str) -> Dict[str, str]:
    """Parse "a=strict,b=blocked" into a dict."""
    pairs = {}
    for item in raw.split(","):
        if "=" not in item:
            logger.warning(f"Ignoring malformed mode override '{item}'")
            continue
        key, value = item.split("=", 1)
        pairs[key.strip()] = value.strip()
    return pairs


def load_config(path: Optional[Path] = None) -> ExportConfig:
    """Load from YAML when a path is given, otherwise from the environment."""
    if path is not None:
        return ExportConfig.from_yaml(Path(path))
    return ExportConfig.from_env()
