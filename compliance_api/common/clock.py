# compliance_api/common/clock.py
from __future__ import annotations

from datetime import datetime

from flask import g, request

from compliance_api.common.errors import APIError


def request_now() -> datetime:
    """
    One "now" per request so every status in a response agrees.

    ?as_of=2024-04-08 or ?as_of=2024-04-08T09:30:00 pins the clock
    (dashboards for a past date, reproducible reports).
    """
    cached = g.get("request_now")
    if cached is not None:
        return cached

    raw = (request.args.get("as_of") or "").strip()
    if raw:
        try:
            now = datetime.fromisoformat(raw)
        except ValueError:
            raise APIError("INVALID_AS_OF", "as_of must be an ISO date or datetime", 422)
    else:
        now = datetime.now()

    g.request_now = now
    return now
