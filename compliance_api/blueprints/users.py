# compliance_api/blueprints/users.py
from __future__ import annotations

from flask import Blueprint, current_app, request
from sqlalchemy import or_

from compliance_api.blueprints.auth import user_payload
from compliance_api.common.auth import requires_roles
from compliance_api.common.payload import json_body, text
from compliance_api.common.http import ok, fail, iso
from compliance_api.common.paging import paginate, text_q
from compliance_api.extensions import db
from compliance_api.models.user import User, ROLES, ROLE_ADMIN, ROLE_SUBCONTRACTOR, USER_STATUSES

bp = Blueprint("users", __name__, url_prefix="/api/v1")

MIN_PASSWORD = 8


def _row(u: User):
    out = user_payload(u)
    out["created_at"] = iso(u.created_at)
    return out


def _password(data: dict):
    value = data.get("password")
    if not isinstance(value, str) or len(value) < MIN_PASSWORD:
        return None, fail(f"password must be at least {MIN_PASSWORD} characters", 422)
    return value, None


def _validate_profile(role: str, company_name: str | None):
    if role not in ROLES:
        return f"role must be one of: {', '.join(ROLES)}"
    if role == ROLE_SUBCONTRACTOR and not company_name:
        return "company_name is required for subcontractors"
    return None


def _new_user(data: dict):
    """Shared by admin create and first-admin setup. Returns (user, error_response)."""
    email = text(data, "email").lower()
    role = text(data, "role").lower()
    full_name = text(data, "full_name") or None
    company_name = text(data, "company_name") or None

    if not email or "@" not in email:
        return None, fail("valid email is required", 422)
    password, err = _password(data)
    if err:
        return None, err
    err = _validate_profile(role, company_name)
    if err:
        return None, fail(err, 422)
    if User.query.filter(db.func.lower(User.email) == email).first():
        return None, fail("User with same email already exists", 409)

    u = User(
        email=email,
        role=role,
        full_name=full_name,
        company_name=company_name if role == ROLE_SUBCONTRACTOR else None,
        status="active",
    )
    u.set_password(password)
    return u, None


# -------- routes --------
@bp.get("/users")
@requires_roles(ROLE_ADMIN)
def list_users():
    qry = User.query

    role = (request.args.get("role") or "").strip().lower()
    if role:
        if role not in ROLES:
            return fail(f"role must be one of: {', '.join(ROLES)}", 422)
        qry = qry.filter(User.role == role)

    status = (request.args.get("status") or "").strip().lower()
    if status:
        if status not in USER_STATUSES:
            return fail("status must be active/inactive", 422)
        qry = qry.filter(User.status == status)

    s = text_q()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(User.email.ilike(like), User.full_name.ilike(like), User.company_name.ilike(like)))

    allowed = {
        "id": User.id,
        "email": User.email,
        "role": User.role,
        "company_name": User.company_name,
        "created_at": User.created_at,
    }
    items, meta = paginate(qry, User.email.asc(), allowed)
    return ok([_row(u) for u in items], **meta)


@bp.get("/users/<int:user_id>")
@requires_roles(ROLE_ADMIN)
def get_user(user_id: int):
    u = db.session.get(User, user_id)
    if not u:
        return fail("User not found", 404)
    return ok(_row(u))


@bp.post("/users")
@requires_roles(ROLE_ADMIN)
def create_user():
    data = json_body()
    u, err = _new_user(data)
    if err:
        return err
    db.session.add(u)
    db.session.commit()
    current_app.logger.info("user created: %s (%s)", u.email, u.role)
    return ok(_row(u), 201)


@bp.patch("/users/<int:user_id>")
@requires_roles(ROLE_ADMIN)
def update_user(user_id: int):
    u = db.session.get(User, user_id)
    if not u:
        return fail("User not found", 404)
    data = json_body()

    role = text(data, "role").lower() or u.role
    company_name = u.company_name
    if "company_name" in data:
        company_name = text(data, "company_name") or None
    err = _validate_profile(role, company_name)
    if err:
        return fail(err, 422)

    status = u.status
    if "status" in data:
        status = text(data, "status").lower()
        if status not in USER_STATUSES:
            return fail("status must be active/inactive", 422)
    password = None
    if "password" in data:
        password, err = _password(data)
        if err:
            return err

    full_name = (text(data, "full_name") or None) if "full_name" in data else u.full_name

    u.status = status
    u.full_name = full_name
    if password is not None:
        u.set_password(password)
    u.role = role
    u.company_name = company_name if role == ROLE_SUBCONTRACTOR else None
    db.session.commit()
    return ok(_row(u))


@bp.post("/setup/admin")
def setup_admin():
    """Bootstrap: create the first admin. Closed once any admin exists."""
    if User.query.filter_by(role=ROLE_ADMIN).first():
        return fail("An admin account already exists", 409, code="SETUP_CLOSED")
    data = json_body()
    data["role"] = ROLE_ADMIN
    u, err = _new_user(data)
    if err:
        return err
    db.session.add(u)
    db.session.commit()
    current_app.logger.warning("initial admin created: %s", u.email)
    return ok(_row(u), 201)
