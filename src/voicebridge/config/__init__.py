"""Configuration module for voicebridge."""

from .loader import Config, get_config, reload_config

__all__ = ["Config", "get_config", "reload_config"]
