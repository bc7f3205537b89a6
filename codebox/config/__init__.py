"""Configuration module for codebox."""

from codebox.config.loader import get_config_path, load_config
from codebox.config.schema import SandboxConfig

__all__ = ["SandboxConfig", "load_config", "get_config_path"]
