"""
Configuration management for BlockLift.

Handles loading, validation, and access to transfer defaults, retry policy,
service limits and logging settings.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import IO, Any, Callable, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..transfer.options import MB, BlobRequestOptions, ServiceLimits
from ..transfer.retry import (
    ExponentialRetryPolicy,
    LinearRetryPolicy,
    NoRetryPolicy,
    RetryConfig,
    RetryPolicy,
)

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryPolicyType(str, Enum):
    """Supported retry policies."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


class TransferConfig(BaseModel):
    """Default request options applied to every operation."""
    stream_write_size_in_bytes: int = Field(default=4 * MB, ge=1)
    single_blob_upload_threshold_in_bytes: int = Field(default=32 * MB, ge=1)
    parallelism_factor: int = Field(default=1, ge=1)
    use_transactional_md5: bool = False
    store_blob_content_md5: bool = True
    disable_content_md5_validation: bool = False
    maximum_execution_time: Optional[float] = Field(default=None, gt=0)

    def to_request_options(self, limits: Optional[ServiceLimits] = None) -> BlobRequestOptions:
        return BlobRequestOptions(
            **self.model_dump(),
            limits=limits or ServiceLimits(),
        )


class RetrySettings(BaseModel):
    """Retry policy configuration."""
    policy: RetryPolicyType = RetryPolicyType.EXPONENTIAL
    max_attempts: int = Field(default=RetryConfig.MAX_ATTEMPTS, ge=1)
    initial_backoff: float = Field(default=RetryConfig.INITIAL_BACKOFF, ge=0.0)
    max_backoff: float = Field(default=RetryConfig.MAX_BACKOFF, ge=0.0)
    multiplier: float = Field(default=RetryConfig.BACKOFF_MULTIPLIER, ge=1.0)

    def build_policy(self) -> RetryPolicy:
        if self.policy == RetryPolicyType.NONE:
            return NoRetryPolicy()
        if self.policy == RetryPolicyType.LINEAR:
            return LinearRetryPolicy(max_attempts=self.max_attempts, delay=self.initial_backoff)
        return ExponentialRetryPolicy(
            max_attempts=self.max_attempts,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            multiplier=self.multiplier,
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'blocklift.transfer.dispatcher': 'DEBUG'}"
    )

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("format must be 'json' or 'text'")
        return v


class BlockLiftConfig(BaseModel):
    """Main BlockLift configuration schema."""

    transfer: TransferConfig = Field(default_factory=TransferConfig)

    retry: RetrySettings = Field(default_factory=RetrySettings)

    limits: ServiceLimits = Field(default_factory=ServiceLimits)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(use_enum_values=False)

    def request_options(self) -> BlobRequestOptions:
        """Default request options with the configured service limits."""
        return self.transfer.to_request_options(self.limits)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on')


# Environment variable suffix -> (section, field, parser)
ENV_VARIABLES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "STREAM_WRITE_SIZE": ("transfer", "stream_write_size_in_bytes", int),
    "SINGLE_UPLOAD_THRESHOLD": ("transfer", "single_blob_upload_threshold_in_bytes", int),
    "PARALLELISM": ("transfer", "parallelism_factor", int),
    "TRANSACTIONAL_MD5": ("transfer", "use_transactional_md5", _parse_bool),
    "STORE_CONTENT_MD5": ("transfer", "store_blob_content_md5", _parse_bool),
    "MAX_EXECUTION_TIME": ("transfer", "maximum_execution_time", float),
    "RETRY_POLICY": ("retry", "policy", str.lower),
    "RETRY_MAX_ATTEMPTS": ("retry", "max_attempts", int),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FILE": ("logging", "file", str),
}

_FILE_LOADERS: Dict[str, Callable[[IO[str]], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.load,
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into nested sections."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Builds a validated BlockLiftConfig.

    Sources, later ones winning:
    1. Defaults
    2. Configuration file (YAML/JSON)
    3. Environment variables (BLOCKLIFT_*)
    4. Explicit overrides (CLI arguments)
    """

    ENV_PREFIX = "BLOCKLIFT_"

    def __init__(self):
        self._config: Optional[BlockLiftConfig] = None
        self._config_file: Optional[Path] = None
        self._overrides: Optional[Dict[str, Any]] = None

    def load(
        self,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> BlockLiftConfig:
        """
        Load the configuration.

        Args:
            config_file: YAML or JSON file
            overrides: Nested mapping applied last

        Returns:
            Validated BlockLiftConfig

        Raises:
            ValidationError: If a value is out of range
            FileNotFoundError: If ``config_file`` does not exist
            ValueError: If the file type is not supported
        """
        layers = []
        if config_file:
            layers.append(self._read_file(Path(config_file)))
        layers.append(self._read_env())
        if overrides:
            layers.append(overrides)

        merged: Dict[str, Any] = {}
        for layer in layers:
            merged = deep_merge(merged, layer)

        try:
            config = BlockLiftConfig(**merged)
        except ValidationError as e:
            logger.error(f"Invalid BlockLift configuration: {e}")
            raise

        self._config = config
        self._config_file = Path(config_file) if config_file else None
        self._overrides = overrides
        logger.debug(f"Active configuration: {json.dumps(config.model_dump(mode='json'))}")
        return config

    def _read_file(self, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        loader = _FILE_LOADERS.get(path.suffix.lower())
        if loader is None:
            raise ValueError(f"Unsupported config file format: {path.suffix}")
        with path.open('r', encoding='utf-8') as f:
            data = loader(f) or {}
        logger.info(f"Read configuration from {path}")
        return data

    def _read_env(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        for suffix, (section, field, parse) in ENV_VARIABLES.items():
            raw = os.getenv(f"{self.ENV_PREFIX}{suffix}")
            if raw:
                config.setdefault(section, {})[field] = parse(raw)
        if config:
            count = sum(len(values) for values in config.values())
            logger.info(f"Applied {count} {self.ENV_PREFIX}* environment override(s)")
        return config

    def get_config(self) -> BlockLiftConfig:
        """
        The configuration from the last ``load``.

        Raises:
            RuntimeError: If nothing was loaded yet
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> BlockLiftConfig:
        """Load again from the same file and overrides, picking up changes."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file, overrides=self._overrides)
