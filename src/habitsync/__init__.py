"""HabitSync: cached, optimistic habit tracking client and its reference service."""

from __future__ import annotations

from .app import create_app
from .config import BaseConfig, DevConfig, TestConfig

__all__ = ["BaseConfig", "DevConfig", "TestConfig", "create_app"]
