"""Configuration module for clawreply."""

from clawreply.config.loader import load_config, get_config_path
from clawreply.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
