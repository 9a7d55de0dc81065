# compliance_api/blueprints/dashboard.py
from flask import Blueprint, request, send_file

from compliance_api.common.auth import requires_roles, current_user
from compliance_api.common.clock import request_now
from compliance_api.common.http import ok, fail
from compliance_api.models.project import Project
from compliance_api.models.submission import Submission
from compliance_api.models.user import User, ROLE_ADMIN, ROLE_ADVISOR, ROLE_SUBCONTRACTOR
from compliance_api.services.analytics import build_admin_analytics, build_register_workbook
from compliance_api.services.compliance_rules import SubmissionPeriod
from compliance_api.services.compliance_views import (
    period_grid,
    projects_for,
    subcontractor_overview,
    summarize_grid,
)

bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")


def _period_arg(now) -> SubmissionPeriod:
    """?month=&year= or, by default, the month before ``now`` (the one currently due)."""
    month = request.args.get("month", type=int)
    year = request.args.get("year", type=int)
    if month is None and year is None:
        return SubmissionPeriod.from_datetime(now).previous()
    return SubmissionPeriod(year=year if year is not None else now.year, month=month)


@bp.get("/admin")
@requires_roles(ROLE_ADMIN)
def admin_dashboard():
    now = request_now()
    data = build_admin_analytics(
        User.query.all(),
        Project.query.filter(Project.is_active.is_(True)).all(),
        Submission.query.all(),
        now,
    )
    return ok(data)


@bp.get("/admin/export")
@requires_roles(ROLE_ADMIN)
def admin_export():
    now = request_now()
    period = _period_arg(now)
    projects = Project.query.filter(Project.is_active.is_(True)).order_by(Project.name.asc()).all()
    rows = period_grid(projects, period, now)
    bio = build_register_workbook(rows, period)
    filename = f"compliance_register_{period.year}{period.month:02d}.xlsx"
    return send_file(
        bio,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=filename,
    )


@bp.get("/advisor")
@requires_roles(ROLE_ADVISOR)
def advisor_dashboard():
    """Per-project subcontractor grid for one period. Admins may pass ?advisor_id=."""
    now = request_now()
    period = _period_arg(now)
    user = current_user()

    qry = projects_for(user).filter(Project.is_active.is_(True))
    if user.role == ROLE_ADMIN:
        advisor_id = request.args.get("advisor_id", type=int)
        if advisor_id:
            qry = qry.filter(Project.assigned_advisor_id == advisor_id)
    projects = qry.order_by(Project.name.asc()).all()

    rows = period_grid(projects, period, now)
    return ok({
        "as_of": now.isoformat(),
        "period": period.as_dict(),
        "summary": summarize_grid(rows),
        "rows": rows,
    })


@bp.get("/subcontractor")
@requires_roles(ROLE_SUBCONTRACTOR)
def subcontractor_dashboard():
    user = current_user()
    if user.role != ROLE_SUBCONTRACTOR:
        return fail("Only subcontractors have a reporting dashboard", 403)
    return ok(subcontractor_overview(user, request_now()))
