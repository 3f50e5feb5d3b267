"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from sqlalchemy.pool import StaticPool

from .client.profiles import SyncProfile, get_profile

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, rejecting garbage loudly."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "HabitSync"
    DB_FILENAME = "habitsync.db"
    USER_HEADER = "X-HabitSync-User"
    TESTING = False

    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("HABITSYNC_SECRET_KEY", "replace-me")
        self.DEV_MODE = _env_bool("HABITSYNC_DEV_MODE", default=True)
        self.DATA_DIR = self._resolve_data_dir()
        self.DATABASE_URL = os.getenv("HABITSYNC_DATABASE_URL", self._build_sqlite_url())
        self.API_BASE_URL = os.getenv("HABITSYNC_API_BASE_URL", "http://127.0.0.1:5000")
        self.SYNC_PROFILE = os.getenv("HABITSYNC_SYNC_PROFILE", "standard")
        self.REQUEST_TIMEOUT = _env_float("HABITSYNC_REQUEST_TIMEOUT", 10.0)
        if not self.DEV_MODE and self.SECRET_KEY == "replace-me":
            raise ValueError("HABITSYNC_SECRET_KEY must be set in non-dev mode.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("HABITSYNC_DATA_DIR", "instance")
        base_path = Path(data_root).expanduser()
        try:
            path = base_path.resolve()
            path.mkdir(parents=True, exist_ok=True)
            return path
        except PermissionError:
            # Read-only install locations fall back to user-local storage.
            fallback_path = Path.home() / f".{self.APP_NAME.lower()}"
            fallback_path.mkdir(parents=True, exist_ok=True)
            return fallback_path.resolve()

    def _build_sqlite_url(self) -> str:
        return f"sqlite:///{self.DATA_DIR / self.DB_FILENAME}"

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        engine_options: dict[str, Any] = {}
        if self.DATABASE_URL.startswith("sqlite"):
            engine_options["connect_args"] = {"check_same_thread": False}
            if self.DATABASE_URL in {"sqlite://", "sqlite:///:memory:"}:
                # A single shared connection keeps the in-memory schema alive.
                engine_options["poolclass"] = StaticPool
        return engine_options

    def sync_profile(self) -> SyncProfile:
        """Resolve the client sync profile named by ``SYNC_PROFILE``."""

        return get_profile(self.SYNC_PROFILE)


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True


class TestConfig(BaseConfig):
    """Configuration used by the test-suite: in-memory database, no log files."""

    __test__ = False

    TESTING = True

    def __init__(self) -> None:
        super().__init__()
        self.DATABASE_URL = os.getenv("HABITSYNC_TEST_DATABASE_URL", "sqlite://")
