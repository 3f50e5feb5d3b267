"""HabitSync reference service application factory."""

from __future__ import annotations

import logging
from importlib import import_module
from typing import Iterable

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from . import cli as _cli
from .config import BaseConfig, DevConfig, TestConfig
from .errors import HabitSyncError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

_CONFIG_MAP = {
    "development": DevConfig,
    "testing": TestConfig,
    "default": BaseConfig,
}


def _resolve_config(name: str | None) -> type[BaseConfig]:
    """Return the config class for the provided environment name."""

    if not name:
        return BaseConfig
    return _CONFIG_MAP.get(name.lower(), BaseConfig)


def _blueprint_paths() -> Iterable[str]:
    yield "habitsync.blueprints.habits"
    yield "habitsync.blueprints.dashboard"


def create_app(config: str | BaseConfig | None = None) -> Flask:
    """Create and configure the Flask application instance."""

    app = Flask(__name__, instance_relative_config=True)
    if isinstance(config, BaseConfig):
        config_obj = config
    else:
        config_obj = _resolve_config(config or app.config.get("ENV"))()
    app.config.from_object(config_obj)
    app.config["HABITSYNC_CONFIG"] = config_obj

    if not config_obj.TESTING:
        setup_logging(config_obj)

    _register_blueprints(app)
    _register_error_handlers(app)

    # Imported lazily so model-only imports do not pull in the engine wiring.
    from .extensions import init_db

    init_db(app)
    _cli.init_app(app)
    return app


def _register_blueprints(app: Flask) -> None:
    """Import and register all blueprints declared in `_blueprint_paths`."""

    for dotted_path in _blueprint_paths():
        module = import_module(dotted_path)
        blueprint = getattr(module, "bp")
        app.register_blueprint(blueprint)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HabitSyncError)
    def _handle_habitsync_error(exc: HabitSyncError):
        return jsonify({"error": exc.message or "Request failed"}), exc.status or 500

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code or 500

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        logger.error(f"Unhandled error: {exc}", exc_info=exc)
        return jsonify({"error": "Internal server error"}), 500
