from flask import Blueprint, request
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)
from compliance_api.common.http import ok, fail
from compliance_api.extensions import db
from compliance_api.models.user import User

bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")

def user_payload(u: User):
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "company_name": u.company_name,
        "status": u.status,
    }

def _claims(u: User):
    return {"role": u.role, "email": u.email, "name": u.display_name}

@bp.post("/login")
def login():
    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        data = {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password):
        return fail("Invalid credentials", status=401)
    if not u.is_active:
        return fail("Account is inactive", status=403, code="ACCOUNT_INACTIVE")

    access  = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"role": u.role})
    return ok({"access": access, "refresh": refresh, "user": user_payload(u)})

@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u or not u.is_active:
        return fail("Unauthorized", status=401)
    new_access = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    return ok({"access": new_access})

@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return fail("User not found", status=404)
    return ok(user_payload(u))
