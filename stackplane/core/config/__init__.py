"""Configuration — the explicit settings struct threaded through every component."""

from stackplane.core.config.loader import ConfigError, StackConfig, load_config

__all__ = ["ConfigError", "StackConfig", "load_config"]
