"""Users API: a small CRUD service over a pooled PostgreSQL connection."""

from __future__ import annotations

from typing import Any

from .config import PoolConfig, Settings, load_settings
from .database import Database


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "PoolConfig",
    "Settings",
    "create_app",
    "load_settings",
]
