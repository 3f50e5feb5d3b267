"""Caller identity and JSON helpers shared by the API blueprints."""

from __future__ import annotations

from typing import Any

from flask import Response, current_app, g, jsonify, request

from ..errors import AuthenticationError, ValidationError
from ..extensions import user_repository


def require_user() -> None:
    """Resolve the upstream-authenticated user or reject the request with 401."""

    header = current_app.config["HABITSYNC_CONFIG"].USER_HEADER
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise AuthenticationError("Unauthorized")
    user = user_repository().get(user_id)
    if user is None:
        raise AuthenticationError("Unauthorized")
    g.user_id = user.id


def current_user_id() -> str:
    return g.user_id


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def cacheable(payload: Any) -> Response:
    """JSON response with a strong ETag, answered with 304 when the client has it."""

    response = jsonify(payload)
    response.add_etag()
    return response.make_conditional(request)
