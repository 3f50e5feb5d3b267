"""Batched dashboard read blueprint."""

from __future__ import annotations

from flask import Blueprint

from ..identity import require_user

bp = Blueprint("dashboard", __name__, url_prefix="/api")
bp.before_request(require_user)

from . import routes  # noqa: E402,F401 - import routes for registration

__all__ = ["bp"]
