# compliance_api/common/auth.py
from __future__ import annotations

from functools import wraps

from flask import g
from flask_jwt_extended import jwt_required, get_jwt_identity

from compliance_api.common.http import fail
from compliance_api.extensions import db
from compliance_api.models.user import User


def _load_user(identity) -> User | None:
    try:
        uid = int(identity)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, uid)


def requires_roles(*codes: str):
    """
    Require a logged-in, active user with AT LEAST ONE of the given roles.
    - Role is read from the database, so role changes apply immediately.
    - 'admin' always passes.
    - No codes means any authenticated user.
    The user is available as ``current_user()`` inside the view.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            user = _load_user(get_jwt_identity())
            if not user or not user.is_active:
                return fail("Unauthorized", status=401)

            if codes and user.role != "admin" and user.role not in codes:
                return fail("Forbidden", status=403)

            g.current_user = user
            return fn(*args, **kwargs)
        return inner
    return outer


def current_user() -> User:
    return g.current_user
