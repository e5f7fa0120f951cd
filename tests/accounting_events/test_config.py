"""
Tests for configuration loading and credential masking.
"""

import logging

import pytest

from accounting_events.config import ExportConfig, load_config
from accounting_events.logging_utils import (
    mask_headers,
    mask_params,
    mask_url,
    mask_value,
    setup_logging,
)
from accounting_events.models import Credentials


ENV_VARS = (
    "AE_MAX_PAGES",
    "AE_REQUEST_TIMEOUT",
    "AE_MAX_RETRIES",
    "AE_RETRY_BACKOFF",
    "AE_USER_AGENT",
    "AE_ENABLED_SOURCES",
    "AE_MODE_OVERRIDES",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "missing.env"


class TestExportConfig:
    """Tests for ExportConfig."""

    def test_defaults(self):
        config = ExportConfig()

        assert config.max_pages == 50
        assert config.request_timeout_seconds == 30.0
        assert config.max_retries == 1
        assert config.enabled_sources == []
        assert config.mode_overrides == {}

    @pytest.mark.parametrize("kwargs", [
        {"max_pages": 0},
        {"request_timeout_seconds": 0},
        {"max_retries": -1},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            ExportConfig(**kwargs)

    def test_from_env_defaults(self, clean_env):
        config = ExportConfig.from_env(clean_env)

        assert config.to_dict() == ExportConfig().to_dict()

    def test_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("AE_MAX_PAGES", "5")
        monkeypatch.setenv("AE_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("AE_MAX_RETRIES", "0")
        monkeypatch.setenv("AE_ENABLED_SOURCES", "hyperliquid, aevo ,")
        monkeypatch.setenv("AE_MODE_OVERRIDES", "kwenta=strict,garbage,drift = blocked")

        config = ExportConfig.from_env(clean_env)

        assert config.max_pages == 5
        assert config.request_timeout_seconds == 2.5
        assert config.max_retries == 0
        assert config.enabled_sources == ["hyperliquid", "aevo"]
        assert config.mode_overrides == {"kwenta": "strict", "drift": "blocked"}

    def test_from_env_validates(self, clean_env, monkeypatch):
        monkeypatch.setenv("AE_MAX_PAGES", "0")

        with pytest.raises(ValueError):
            ExportConfig.from_env(clean_env)

    def test_from_dotenv_file(self, clean_env, monkeypatch, tmp_path):
        dotenv = tmp_path / ".env"
        dotenv.write_text("AE_MAX_PAGES=7\n")
        # Registers the variable with monkeypatch so teardown removes it
        monkeypatch.setenv("AE_MAX_PAGES", "1")
        monkeypatch.delenv("AE_MAX_PAGES")

        config = ExportConfig.from_env(dotenv)

        assert config.max_pages == 7

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "max_pages: 3\n"
            "request_timeout_seconds: 10\n"
            "enabled_sources:\n"
            "  - cosmos-hub-staking\n"
            "modes:\n"
            "  kwenta: strict\n"
        )

        config = load_config(path)

        assert config.max_pages == 3
        assert config.request_timeout_seconds == 10
        assert config.enabled_sources == ["cosmos-hub-staking"]
        assert config.mode_overrides == {"kwenta": "strict"}
        assert config.max_retries == 1

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert ExportConfig.from_yaml(path).max_pages == 50


class TestMasking:
    """Credentials never reach logs in clear text."""

    def test_mask_value(self):
        assert mask_value("abcdefgh") == "abcd...***"
        assert mask_value("abc") == "***"
        assert mask_value("") == "***"

    def test_mask_headers(self):
        headers = {"AEVO-KEY": "key-123456", "AEVO-SECRET": "sec-123456", "Accept": "json"}

        masked = mask_headers(headers)

        assert masked["AEVO-KEY"] == "key-...***"
        assert "123456" not in masked["AEVO-SECRET"]
        assert masked["Accept"] == "json"

    def test_mask_params_nested(self):
        masked = mask_params({"account": "0x1", "auth": {"api_key": "supersecret"}})

        assert masked["account"] == "0x1"
        assert masked["auth"]["api_key"] == "supe...***"

    def test_mask_url(self):
        url = "https://x.test/path?account=0x1&api_key=secret123&limit=5"

        assert mask_url(url) == "https://x.test/path?account=0x1&api_key=***&limit=5"

    def test_credentials_repr(self):
        text = repr(Credentials(api_key="key-123456", api_secret="sec-123456"))

        assert "key-123456" not in text
        assert "sec-123456" not in text

    def test_credentials_complete(self):
        assert Credentials("k", "s").is_complete()
        assert not Credentials("k").is_complete()


class TestSetupLogging:
    """Tests for logging setup."""

    def test_json_format(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            logger = setup_logging(level="debug", log_format="json", request_id="req-1")

            assert logger.name == "accounting_events"
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert "req-1" in root.handlers[0].formatter._fmt
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
