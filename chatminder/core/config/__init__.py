"""Configuration module."""

from chatminder.core.config.loader import load_config
from chatminder.core.config.schema import Config

__all__ = ["Config", "load_config"]
