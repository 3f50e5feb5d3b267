"""Dashboard route: habits, entries and stats in one round trip."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone

from flask import jsonify, request

from ...extensions import habit_repository
from ...models import HabitRead
from ...services.stats import compute_stats
from ..identity import current_user_id
from . import bp


@bp.get("/dashboard-data")
def dashboard_data():
    user_id = current_user_id()
    repo = habit_repository()
    habits = repo.list_active(user_id=user_id)
    entries = repo.list_entries(user_id=user_id)

    stats = compute_stats(habits, entries, "today").to_dict()
    stats["completed_today"] = stats["completed_in_period"]

    body = {
        "habits": [HabitRead.model_validate(h).model_dump(mode="json") for h in habits],
        "entries": [entry.model_dump(mode="json") for entry in entries],
        "stats": stats,
    }
    # The timestamp changes every call, so the validator covers everything else.
    digest = hashlib.sha1(
        json.dumps(body, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()

    response = jsonify({**body, "timestamp": datetime.now(timezone.utc).isoformat()})
    response.set_etag(digest)
    return response.make_conditional(request)
