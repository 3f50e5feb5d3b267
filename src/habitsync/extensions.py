"""Database and repository wiring for the Flask app."""

from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app
from sqlalchemy.engine import Engine

from .config import BaseConfig
from .domain.repositories import HabitRepository, UserRepository
from .infra.database import SessionFactory, create_db_engine, create_session_factory, init_database
from .infra.repositories import SQLModelHabitRepository, SQLModelUserRepository

EXTENSION_KEY = "habitsync"


@dataclass
class Services:
    engine: Engine
    session_factory: SessionFactory
    habits: HabitRepository
    users: UserRepository


def init_db(app: Flask) -> Services:
    """Create the engine, make sure the schema exists and attach repositories."""

    config: BaseConfig = app.config["HABITSYNC_CONFIG"]
    engine = create_db_engine(config)
    init_database(engine)
    # TODO(@migrations): replace create_all with Alembic once the schema needs to evolve.
    session_factory = create_session_factory(engine)
    services = Services(
        engine=engine,
        session_factory=session_factory,
        habits=SQLModelHabitRepository(session_factory),
        users=SQLModelUserRepository(session_factory),
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app: Flask | None = None) -> Services:
    """Return the wiring attached by :func:`init_db`."""

    target = app or current_app
    try:
        return target.extensions[EXTENSION_KEY]
    except KeyError as exc:  # pragma: no cover - misconfigured app
        raise RuntimeError("Database not initialized; call init_db(app) first") from exc


def habit_repository() -> HabitRepository:
    return get_services().habits


def user_repository() -> UserRepository:
    return get_services().users
