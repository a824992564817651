"""
FastAPI dependency utilities for injecting configuration.
"""

from typing import Dict, Optional

from notion_link.core.config import AppSettings, get_settings

_pinned: Dict[str, AppSettings] = {}


def pin_settings(settings: Optional[AppSettings]) -> None:
    """Serve ``settings`` instead of the environment; ``None`` restores the default."""
    _pinned.clear()
    if settings is not None:
        _pinned["settings"] = settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _pinned.get("settings") or get_settings()


__all__ = ["get_app_settings", "pin_settings"]
