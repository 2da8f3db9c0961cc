"""Configuration for tablewatch."""

from tablewatch.config.loader import ConfigLoadError, YAMLConfigLoader, load_settings
from tablewatch.config.models import MAX_FRAGMENT_SIZE, DebounceOptions, ObserverSettings

__all__ = [
    "ConfigLoadError",
    "DebounceOptions",
    "MAX_FRAGMENT_SIZE",
    "ObserverSettings",
    "YAMLConfigLoader",
    "load_settings",
]
