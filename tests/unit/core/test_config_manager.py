"""
Tests for ConfigManager.
"""

import json
import os

import pytest
import yaml
from pydantic import ValidationError

from blocklift.core.config_manager import (
    BlockLiftConfig,
    ConfigManager,
    LogLevel,
    RetryPolicyType,
)
from blocklift.transfer.options import MB
from blocklift.transfer.retry import ExponentialRetryPolicy, LinearRetryPolicy, NoRetryPolicy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove BLOCKLIFT_* variables inherited from the environment."""
    for name in list(os.environ):
        if name.startswith(ConfigManager.ENV_PREFIX):
            monkeypatch.delenv(name)


class TestConfigManager:
    """Test suite for ConfigManager."""

    def test_load_defaults(self):
        """Test loading default configuration."""
        config = ConfigManager().load()

        assert config.transfer.stream_write_size_in_bytes == 4 * MB
        assert config.transfer.single_blob_upload_threshold_in_bytes == 32 * MB
        assert config.transfer.parallelism_factor == 1
        assert config.retry.policy == RetryPolicyType.EXPONENTIAL
        assert config.logging.level == LogLevel.INFO

    def test_load_from_yaml_file(self, tmp_path):
        """Test loading configuration from YAML file."""
        config_file = tmp_path / "blocklift.yaml"
        config_file.write_text(yaml.dump({
            "transfer": {"stream_write_size_in_bytes": 1024, "parallelism_factor": 8},
            "logging": {"level": "DEBUG"},
        }))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.transfer.stream_write_size_in_bytes == 1024
        assert config.transfer.parallelism_factor == 8
        assert config.logging.level == LogLevel.DEBUG

    def test_load_from_json_file(self, tmp_path):
        """Test loading configuration from JSON file."""
        config_file = tmp_path / "blocklift.json"
        config_file.write_text(json.dumps({"retry": {"policy": "linear", "max_attempts": 2}}))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.retry.policy == RetryPolicyType.LINEAR
        assert config.retry.max_attempts == 2

    def test_missing_file(self):
        """Test a missing config file raises."""
        with pytest.raises(FileNotFoundError):
            ConfigManager().load(config_file="/nonexistent/blocklift.yaml")

    def test_unsupported_format(self, tmp_path):
        """Test unknown file suffixes are rejected."""
        config_file = tmp_path / "blocklift.toml"
        config_file.write_text("")
        with pytest.raises(ValueError):
            ConfigManager().load(config_file=str(config_file))

    def test_load_from_env_variables(self, monkeypatch):
        """Test loading configuration from environment variables."""
        monkeypatch.setenv("BLOCKLIFT_STREAM_WRITE_SIZE", "2048")
        monkeypatch.setenv("BLOCKLIFT_PARALLELISM", "4")
        monkeypatch.setenv("BLOCKLIFT_TRANSACTIONAL_MD5", "true")
        monkeypatch.setenv("BLOCKLIFT_MAX_EXECUTION_TIME", "12.5")
        monkeypatch.setenv("BLOCKLIFT_RETRY_POLICY", "NONE")
        monkeypatch.setenv("BLOCKLIFT_LOG_LEVEL", "warning")

        config = ConfigManager().load()

        assert config.transfer.stream_write_size_in_bytes == 2048
        assert config.transfer.parallelism_factor == 4
        assert config.transfer.use_transactional_md5 is True
        assert config.transfer.maximum_execution_time == 12.5
        assert config.retry.policy == RetryPolicyType.NONE
        assert config.logging.level == LogLevel.WARNING

    def test_precedence(self, tmp_path, monkeypatch):
        """Test overrides beat environment which beats the file."""
        config_file = tmp_path / "blocklift.yaml"
        config_file.write_text(yaml.dump({"transfer": {"parallelism_factor": 2, "stream_write_size_in_bytes": 100}}))
        monkeypatch.setenv("BLOCKLIFT_PARALLELISM", "3")

        config = ConfigManager().load(
            config_file=str(config_file),
            overrides={"transfer": {"parallelism_factor": 5}},
        )

        assert config.transfer.parallelism_factor == 5
        assert config.transfer.stream_write_size_in_bytes == 100

    def test_invalid_values(self):
        """Test invalid configuration raises a validation error."""
        with pytest.raises(ValidationError):
            ConfigManager().load(overrides={"transfer": {"parallelism_factor": 0}})
        with pytest.raises(ValidationError):
            ConfigManager().load(overrides={"logging": {"format": "xml"}})

    def test_get_config_before_load(self):
        """Test accessing configuration before loading fails."""
        with pytest.raises(RuntimeError):
            ConfigManager().get_config()

    def test_reload(self, tmp_path):
        """Test reload re-reads the same file."""
        config_file = tmp_path / "blocklift.yaml"
        config_file.write_text(yaml.dump({"transfer": {"parallelism_factor": 2}}))
        manager = ConfigManager()
        manager.load(config_file=str(config_file))

        config_file.write_text(yaml.dump({"transfer": {"parallelism_factor": 6}}))

        assert manager.reload().transfer.parallelism_factor == 6
        assert manager.get_config().transfer.parallelism_factor == 6


class TestBlockLiftConfig:
    """Derived request options and retry policies."""

    def test_request_options_carry_limits(self):
        """Test configured limits flow into request options."""
        config = BlockLiftConfig(
            transfer={"parallelism_factor": 3},
            limits={"max_block_count": 10},
        )

        options = config.request_options()

        assert options.parallelism_factor == 3
        assert options.limits.max_block_count == 10

    @pytest.mark.parametrize("policy,expected", [
        ("exponential", ExponentialRetryPolicy),
        ("linear", LinearRetryPolicy),
        ("none", NoRetryPolicy),
    ])
    def test_build_policy(self, policy, expected):
        """Test each configured policy type builds the matching policy."""
        config = BlockLiftConfig(retry={"policy": policy, "max_attempts": 3})
        assert isinstance(config.retry.build_policy(), expected)
