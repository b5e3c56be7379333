"""Tests for crm_sync.config -- env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).
"""

import logging

import pytest

from crm_sync.config import Config, load_config, validate_config
from crm_sync.config_schema import DEFAULT_SYNC_PERIOD_MS

_ENV_KEYS = (
    "CRM_WEBHOOK_URL",
    "CRM_FRONT_URL",
    "CRM_TOKEN",
    "CRM_INSECURE",
    "CRM_DEBUG",
    "CRM_STORE_PATH",
    "CRM_SPACE",
    "CRM_PAGE_LIMIT",
    "CRM_SYNC_PERIOD_MS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _config(**overrides) -> Config:
    values = {
        "webhook_url": "https://crm.example.com/rest/1/abc",
        "front_url": "https://front.example.com",
        "token": "secret",
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def required_env(monkeypatch):
    monkeypatch.setenv("CRM_WEBHOOK_URL", "https://crm.example.com/rest/1/abc")
    monkeypatch.setenv("CRM_FRONT_URL", "https://front.example.com")
    monkeypatch.setenv("CRM_TOKEN", "secret")


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() -- URL format, token and ranges."""

    def test_valid_config(self):
        validate_config(_config())  # should not raise

    def test_http_url_valid(self):
        validate_config(_config(webhook_url="http://localhost:8080/rest/1/x"))

    def test_invalid_webhook_scheme(self):
        with pytest.raises(ValueError, match="must start with http:// or https://"):
            validate_config(_config(webhook_url="ftp://crm.example.com"))

    def test_invalid_front_url(self):
        with pytest.raises(ValueError, match="front URL"):
            validate_config(_config(front_url="front.example.com"))

    def test_empty_host_rejected(self):
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(_config(webhook_url="https://"))

    def test_whitespace_token_rejected(self):
        with pytest.raises(ValueError, match="token cannot be empty"):
            validate_config(_config(token="   "))

    def test_trailing_slash_and_whitespace_stripped(self):
        config = _config(
            webhook_url="  https://crm.example.com/rest/1/abc/  ",
            front_url="https://front.example.com/",
        )
        validate_config(config)
        assert config.webhook_url == "https://crm.example.com/rest/1/abc"
        assert config.front_url == "https://front.example.com"

    @pytest.mark.parametrize("limit", [0, 100001])
    def test_page_limit_out_of_range(self, limit):
        with pytest.raises(ValueError, match="page limit"):
            validate_config(_config(page_limit=limit))

    def test_negative_sync_period(self):
        with pytest.raises(ValueError, match="sync period"):
            validate_config(_config(sync_period_ms=-1))

    def test_negative_error_backoff(self):
        with pytest.raises(ValueError, match="error backoff"):
            validate_config(_config(error_backoff=-0.5))

    def test_insecure_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="crm_sync.config"):
            validate_config(_config(insecure=True))
        assert "SSL verification disabled" in caplog.text

    def test_secure_no_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="crm_sync.config"):
            validate_config(_config())
        assert "SSL verification disabled" not in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() -- env vars, CLI overrides, YAML fallbacks."""

    def test_load_from_env_vars(self, required_env):
        config = load_config()

        assert config.webhook_url == "https://crm.example.com/rest/1/abc"
        assert config.front_url == "https://front.example.com"
        assert config.token == "secret"
        assert config.page_limit == 50
        assert config.sync_period_ms == DEFAULT_SYNC_PERIOD_MS
        assert config.store_path == ".crm_sync/store.json"

    def test_cli_args_override_env(self, required_env):
        config = load_config(
            webhook_url="https://cli.example.com/rest/2/x",
            token="cli-token",
        )
        assert config.webhook_url == "https://cli.example.com/rest/2/x"
        assert config.token == "cli-token"
        assert config.front_url == "https://front.example.com"

    def test_yaml_fallbacks_used_when_env_missing(self):
        config = load_config(
            yaml_fallbacks={
                "webhook_url": "https://yaml.example.com/rest/1/y",
                "front_url": "https://front.yaml.example.com",
                "token": "yaml-token",
                "insecure": True,
            }
        )
        assert config.webhook_url == "https://yaml.example.com/rest/1/y"
        assert config.token == "yaml-token"
        assert config.insecure is True

    def test_env_beats_yaml(self, required_env):
        config = load_config(
            yaml_fallbacks={"webhook_url": "https://yaml.example.com/rest/1/y"}
        )
        assert config.webhook_url == "https://crm.example.com/rest/1/abc"

    def test_missing_webhook_raises(self):
        with pytest.raises(ValueError, match="CRM webhook URL not found"):
            load_config()

    def test_missing_token_raises(self, monkeypatch):
        monkeypatch.setenv("CRM_WEBHOOK_URL", "https://crm.example.com/rest/1/abc")
        monkeypatch.setenv("CRM_FRONT_URL", "https://front.example.com")
        with pytest.raises(ValueError, match="Upload token not found"):
            load_config()

    @pytest.mark.parametrize("value", ["true", "1", "yes", "ON"])
    def test_insecure_env_truthy(self, required_env, monkeypatch, value):
        monkeypatch.setenv("CRM_INSECURE", value)
        assert load_config().insecure is True

    def test_insecure_env_false_beats_yaml(self, required_env, monkeypatch):
        monkeypatch.setenv("CRM_INSECURE", "false")
        config = load_config(yaml_fallbacks={"insecure": True})
        assert config.insecure is False

    def test_sync_settings_from_env(self, required_env, monkeypatch):
        monkeypatch.setenv("CRM_STORE_PATH", "/data/store.json")
        monkeypatch.setenv("CRM_SPACE", "crm:space:Leads")
        monkeypatch.setenv("CRM_PAGE_LIMIT", "200")
        monkeypatch.setenv("CRM_SYNC_PERIOD_MS", "0")

        config = load_config(sync_fallbacks={"limit": 10, "space": "other"})

        assert config.store_path == "/data/store.json"
        assert config.space == "crm:space:Leads"
        assert config.page_limit == 200
        assert config.sync_period_ms == 0

    def test_sync_settings_from_yaml(self, required_env):
        config = load_config(
            sync_fallbacks={
                "store_path": "/yaml/store.json",
                "limit": 10,
                "sync_period_ms": 5000,
                "error_backoff": 0.25,
            }
        )
        assert config.store_path == "/yaml/store.json"
        assert config.page_limit == 10
        assert config.sync_period_ms == 5000
        assert config.error_backoff == 0.25

    @pytest.mark.parametrize("value", ["abc", "0", "100001"])
    def test_invalid_page_limit_env(self, required_env, monkeypatch, value):
        monkeypatch.setenv("CRM_PAGE_LIMIT", value)
        with pytest.raises(ValueError, match="CRM_PAGE_LIMIT"):
            load_config()
