# compliance_api/blueprints/projects.py
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy import or_

from compliance_api.common.auth import requires_roles, current_user
from compliance_api.common.http import ok, fail, iso
from compliance_api.common.paging import paginate, text_q
from compliance_api.common.payload import flag, json_body, parse_flag, text
from compliance_api.extensions import db
from compliance_api.models.project import Project
from compliance_api.models.user import User, ROLE_ADMIN, ROLE_ADVISOR, ROLE_SUBCONTRACTOR
from compliance_api.services.compliance_views import projects_for

bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")


# -------- row shape --------
def _row(p: Project):
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "is_active": p.is_active,
        "assigned_advisor_id": p.assigned_advisor_id,
        "advisor_name": p.advisor.display_name if p.advisor else None,
        "subcontractors": [
            {"id": u.id, "email": u.email, "company_name": u.company_name}
            for u in p.subcontractors
        ],
        "created_at": iso(p.created_at),
    }


def _resolve_advisor(data: dict):
    advisor_id = data.get("assigned_advisor_id")
    if advisor_id in (None, ""):
        return None, None
    try:
        advisor = db.session.get(User, int(advisor_id))
    except (TypeError, ValueError):
        return None, fail("assigned_advisor_id must be an integer", 422)
    if not advisor or advisor.role != ROLE_ADVISOR:
        return None, fail("assigned_advisor_id must reference an advisor", 422)
    return advisor, None


def _resolve_subcontractors(data: dict):
    raw = data.get("subcontractor_ids") or []
    if not isinstance(raw, list):
        return None, fail("subcontractor_ids must be a list", 422)
    try:
        ids = sorted({int(x) for x in raw})
    except (TypeError, ValueError):
        return None, fail("subcontractor_ids must be integers", 422)
    if not ids:
        return [], None
    users = User.query.filter(User.id.in_(ids)).all()
    bad = sorted(set(ids) - {u.id for u in users if u.role == ROLE_SUBCONTRACTOR})
    if bad:
        return None, fail("subcontractor_ids must reference subcontractors", 422, detail={"invalid_ids": bad})
    return users, None


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    qry = Project.query.filter(db.func.lower(Project.name) == name.lower())
    if exclude_id is not None:
        qry = qry.filter(Project.id != exclude_id)
    return qry.first() is not None


# -------- routes --------
@bp.get("")
@requires_roles()
def list_projects():
    qry = projects_for(current_user())

    is_active = request.args.get("is_active")
    if is_active is not None:
        v = parse_flag(is_active)
        if v is None:
            return fail("is_active must be true/false", 422)
        qry = qry.filter(Project.is_active.is_(v))

    advisor_id = request.args.get("advisor_id", type=int)
    if advisor_id:
        qry = qry.filter(Project.assigned_advisor_id == advisor_id)

    s = text_q()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(Project.name.ilike(like), Project.description.ilike(like)))

    allowed = {"id": Project.id, "name": Project.name, "created_at": Project.created_at}
    items, meta = paginate(qry, Project.name.asc(), allowed)
    return ok([_row(p) for p in items], **meta)


@bp.get("/<int:project_id>")
@requires_roles()
def get_project(project_id: int):
    p = db.session.get(Project, project_id)
    if not p or not p.visible_to(current_user()):
        return fail("Project not found", 404)
    return ok(_row(p))


@bp.post("")
@requires_roles(ROLE_ADMIN)
def create_project():
    data = json_body()
    name = text(data, "name")
    if not name:
        return fail("name is required", 422)
    if _name_taken(name):
        return fail("Project with same name already exists", 409)

    description = text(data, "description") or None
    is_active = flag(data, "is_active", True)
    advisor, err = _resolve_advisor(data)
    if err:
        return err
    subs, err = _resolve_subcontractors(data)
    if err:
        return err

    p = Project(
        name=name,
        description=description,
        assigned_advisor_id=advisor.id if advisor else None,
        is_active=is_active,
    )
    p.subcontractors = subs
    db.session.add(p)
    db.session.commit()
    return ok(_row(p), 201)


@bp.put("/<int:project_id>")
@requires_roles(ROLE_ADMIN)
def update_project(project_id: int):
    p = db.session.get(Project, project_id)
    if not p:
        return fail("Project not found", 404)
    data = json_body()

    # type errors surface before anything on the row changes
    candidate = text(data, "name")
    description = text(data, "description") or None
    is_active = flag(data, "is_active", p.is_active)

    if "name" in data:
        if not candidate:
            return fail("name cannot be empty", 422)
        if _name_taken(candidate, exclude_id=p.id):
            return fail("Project with same name already exists", 409)
        p.name = candidate

    if "description" in data:
        p.description = description

    if "assigned_advisor_id" in data:
        advisor, err = _resolve_advisor(data)
        if err:
            return err
        p.assigned_advisor_id = advisor.id if advisor else None

    if "subcontractor_ids" in data:
        subs, err = _resolve_subcontractors(data)
        if err:
            return err
        p.subcontractors = subs

    p.is_active = is_active

    db.session.commit()
    return ok(_row(p))
