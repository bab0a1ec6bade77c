"""Configuration package for the CFB efficiency engine."""

from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
