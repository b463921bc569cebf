"""Core module initialization."""

from .config_manager import BlockLiftConfig, ConfigManager
from .logging_config import setup_logging

__all__ = [
    "BlockLiftConfig",
    "ConfigManager",
    "setup_logging",
]
