"""Configuration for the BurnWatch engine."""

from .settings import BurnWatchConfig, get_config, reload_config

__all__ = ["BurnWatchConfig", "get_config", "reload_config"]
