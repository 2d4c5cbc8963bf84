"""Tests for configuration loading."""

import os

import pytest
from pydantic import ValidationError

from workflow_core.config import (
    AppConfig,
    get_config,
    get_testing_config,
    load_config,
    reset_config,
    validate_config,
)
from workflow_core.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the global configuration around each test."""
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Test cases for AppConfig."""

    def test_defaults(self):
        """Defaults disable node limits and keep every validation check on."""
        config = AppConfig()

        assert config.node_timeout is None
        assert config.node_max_retries == 0
        assert config.get_execution_config().timeout is None
        validation = config.get_validation_config()
        assert validation.check_ssrf is True
        assert validation.strict_mode is False
        assert validation.max_chain_depth == 10

    def test_from_env(self, monkeypatch):
        """Prefixed environment variables are read and converted."""
        monkeypatch.setenv("WORKFLOW_CORE_PORT", "9100")
        monkeypatch.setenv("WORKFLOW_CORE_DEBUG", "yes")
        monkeypatch.setenv("WORKFLOW_CORE_NODE_TIMEOUT", "2.5")
        monkeypatch.setenv("WORKFLOW_CORE_NODE_MAX_RETRIES", "3")
        monkeypatch.setenv("WORKFLOW_CORE_STRICT_VALIDATION", "true")
        monkeypatch.setenv("WORKFLOW_CORE_LOG_LEVEL", "debug")
        monkeypatch.setenv("WORKFLOW_CORE_CORS_ORIGINS", "https://a.example,https://b.example")

        config = AppConfig.from_env()

        assert config.port == 9100
        assert config.debug is True
        assert config.get_execution_config().timeout == 2.5
        assert config.get_execution_config().max_retries == 3
        assert config.get_validation_config().strict_mode is True
        assert config.log_level.value == "DEBUG"
        assert config.cors_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize("field,value", [
        ("port", 0),
        ("node_timeout", -1),
        ("node_max_retries", -1),
        ("max_chain_depth", 0),
    ])
    def test_invalid_values(self, field, value):
        """Out of range settings are rejected."""
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})

    def test_get_config_is_cached(self):
        """The global configuration is built once."""
        assert get_config() is get_config()

    def test_load_config_reads_env_file(self, tmp_path, monkeypatch):
        """Values from a .env file are picked up."""
        monkeypatch.delenv("WORKFLOW_CORE_MAX_CHAIN_DEPTH", raising=False)
        env_file = tmp_path / "test.env"
        env_file.write_text("WORKFLOW_CORE_MAX_CHAIN_DEPTH=25\n")

        try:
            config = load_config(str(env_file))
            assert config.max_chain_depth == 25
            assert get_config() is config
        finally:
            os.environ.pop("WORKFLOW_CORE_MAX_CHAIN_DEPTH", None)

    def test_validate_config_rejects_unbounded_nodes(self):
        """Timeout times attempts may not exceed an hour."""
        config = AppConfig(node_timeout=1800, node_max_retries=2)

        with pytest.raises(ConfigurationError):
            validate_config(config)

    def test_testing_config_is_valid(self):
        """The testing preset passes validation."""
        validate_config(get_testing_config())
