"""Environment-backed configuration."""

from servicekit.config.settings import AppConfig, load_config

__all__ = ["AppConfig", "load_config"]
