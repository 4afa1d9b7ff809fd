"""
reelscribe configuration.

Pydantic settings loaded from YAML (see ``settings.load_config``) and the
constant tables the components fall back to.
"""

from .settings import AppConfig, dump_config, load_config
from .errors import ConfigLoadError, SettingsValidationError, YAMLParseError

__all__ = [
    "AppConfig",
    "load_config",
    "dump_config",
    "ConfigLoadError",
    "SettingsValidationError",
    "YAMLParseError",
]
