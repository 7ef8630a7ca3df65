"""Declared ingress state and runtime settings."""

from .lock import FileLock
from .models import ConfigSnapshot, IngressMapping
from .settings import (
    Settings,
    clear_settings,
    default_credentials_path,
    default_ingress_path,
    load_settings,
    save_settings,
)
from .store import ConfigStore

__all__ = [
    "ConfigSnapshot",
    "ConfigStore",
    "FileLock",
    "IngressMapping",
    "Settings",
    "clear_settings",
    "default_credentials_path",
    "default_ingress_path",
    "load_settings",
    "save_settings",
]
