# compliance_api/blueprints/submissions.py
from __future__ import annotations

import logging

from flask import Blueprint, request

from compliance_api.common.auth import requires_roles, current_user
from compliance_api.common.clock import request_now
from compliance_api.common.http import ok, fail
from compliance_api.common.paging import paginate
from compliance_api.extensions import db
from compliance_api.models.project import Project
from compliance_api.models.submission import Submission, SubmissionDocument
from compliance_api.models.user import ROLE_SUBCONTRACTOR
from compliance_api.services.compliance_rules import (
    STATUS_SUBMITTED,
    SUBMISSION_STATUSES,
    MetricSet,
    SubmissionPeriod,
    can_submit_for_period,
    required_monthly_documents,
)
from compliance_api.services.compliance_views import (
    submission_row,
    submission_visible_to,
    submissions_for,
)
from compliance_api.services.storage import get_store

log = logging.getLogger(__name__)

bp = Blueprint("submissions", __name__, url_prefix="/api/v1/submissions")


def _own_submission(submission_id: int):
    """Load a submission the current subcontractor owns. Returns (submission, error_response)."""
    user = current_user()
    if user.role != ROLE_SUBCONTRACTOR:
        return None, fail("Only subcontractors can change submissions", 403)
    s = db.session.get(Submission, submission_id)
    if not s or s.subcontractor_id != user.id:
        return None, fail("Submission not found", 404)
    return s, None


# -------- reads --------
@bp.get("")
@requires_roles()
def list_submissions():
    now = request_now()
    qry = submissions_for(current_user())

    project_id = request.args.get("project_id", type=int)
    if project_id:
        qry = qry.filter(Submission.project_id == project_id)
    subcontractor_id = request.args.get("subcontractor_id", type=int)
    if subcontractor_id:
        qry = qry.filter(Submission.subcontractor_id == subcontractor_id)
    month = request.args.get("month", type=int)
    if month:
        qry = qry.filter(Submission.month == month)
    year = request.args.get("year", type=int)
    if year:
        qry = qry.filter(Submission.year == year)
    status = request.args.get("status")
    if status:
        if status not in SUBMISSION_STATUSES:
            return fail(f"status must be one of: {', '.join(SUBMISSION_STATUSES)}", 422)
        qry = qry.filter(Submission.status == status)

    allowed = {
        "id": Submission.id,
        "year": Submission.year,
        "month": Submission.month,
        "submitted_at": Submission.submitted_at,
    }
    items, meta = paginate(qry, Submission.id.desc(), allowed)
    return ok([submission_row(s, now) for s in items], as_of=now.isoformat(), **meta)


@bp.get("/<int:submission_id>")
@requires_roles()
def get_submission(submission_id: int):
    s = db.session.get(Submission, submission_id)
    if not s or not submission_visible_to(s, current_user()):
        return fail("Submission not found", 404)
    return ok(submission_row(s, request_now()))


# -------- writes (subcontractor) --------
@bp.put("")
@requires_roles(ROLE_SUBCONTRACTOR)
def save_draft():
    """
    Create or update the draft for (project, month, year).

    Body: {"project_id": 1, "month": 3, "year": 2024, "metrics": {...}}
    Metrics are merged into what is already stored; send null to clear one.
    """
    user = current_user()
    if user.role != ROLE_SUBCONTRACTOR:
        return fail("Only subcontractors can change submissions", 403)
    now = request_now()
    data = request.get_json(silent=True, force=True) or {}

    try:
        project_id = int(data.get("project_id"))
    except (TypeError, ValueError):
        return fail("project_id is required", 422)
    project = db.session.get(Project, project_id)
    if not project or not project.has_subcontractor(user.id):
        return fail("Project not found", 404)
    if not project.is_active:
        return fail("Project is inactive", 409, code="PROJECT_INACTIVE")

    period = SubmissionPeriod(year=data.get("year"), month=data.get("month"))
    if not can_submit_for_period(period, now):
        return fail(
            "Reports can only be filed for the current or previous month",
            422,
            code="PERIOD_CLOSED",
        )

    incoming = data.get("metrics") or {}
    if not isinstance(incoming, dict):
        return fail("metrics must be an object", 422)

    s = Submission.query.filter_by(
        project_id=project.id, subcontractor_id=user.id, month=period.month, year=period.year
    ).first()
    if s is not None and s.is_submitted:
        return fail("Submission already filed; metrics are locked", 409, code="SUBMISSION_LOCKED")

    merged = s.metric_set().as_dict() if s is not None else {}
    merged.update(incoming)
    metrics = MetricSet.from_mapping(merged)

    created = s is None
    if created:
        s = Submission(project_id=project.id, subcontractor_id=user.id, month=period.month, year=period.year)
        db.session.add(s)
    s.apply_metrics(metrics)
    db.session.commit()
    return ok(submission_row(s, now), 201 if created else 200)


@bp.post("/<int:submission_id>/submit")
@requires_roles(ROLE_SUBCONTRACTOR)
def submit(submission_id: int):
    s, err = _own_submission(submission_id)
    if err:
        return err
    now = request_now()

    if s.is_submitted:
        return fail("Submission already filed", 409, code="SUBMISSION_LOCKED")
    if not can_submit_for_period(s.period, now):
        return fail("The submission window for this period has closed", 422, code="PERIOD_CLOSED")
    metrics = s.metric_set()
    if not metrics.is_complete():
        missing = [k for k, v in metrics.as_dict().items() if v is None]
        return fail("All metrics are required before submitting", 422, code="METRICS_INCOMPLETE", detail={"missing": missing})

    s.status = STATUS_SUBMITTED
    s.submitted_at = now
    db.session.commit()
    log.info("submission %s filed for %s", s.id, s.period.key)
    return ok(submission_row(s, now))


@bp.post("/<int:submission_id>/documents")
@requires_roles(ROLE_SUBCONTRACTOR)
def upload_document(submission_id: int):
    """
    multipart/form-data: file=<blob>, doc_type=<one of the required monthly documents>

    A draft may replace a document; a filed submission only accepts document
    types that are still missing.
    """
    s, err = _own_submission(submission_id)
    if err:
        return err
    now = request_now()

    doc_type = (request.form.get("doc_type") or "").strip()
    required = required_monthly_documents(s.metric_set())
    if doc_type not in required:
        return fail("doc_type is not required for this submission", 422, detail={"allowed": required})

    f = request.files.get("file")
    if f is None or not f.filename:
        return fail("file is required", 422)

    existing = s.find_document(doc_type)
    if existing is not None and s.is_submitted:
        return fail("Document already provided for this filed submission", 409, code="DOCUMENT_EXISTS")

    store = get_store()
    key = store.submission_key(s.project_id, s.subcontractor_id, s.period, f.filename)
    size = store.save(f, key)
    old_key = existing.storage_path if existing is not None else None

    try:
        if existing is not None:
            s.documents.remove(existing)
            db.session.flush()
        s.documents.append(SubmissionDocument(
            doc_type=doc_type,
            storage_path=key,
            original_file_name=f.filename,
            file_size=size,
            uploaded_at=now,
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        store.delete(key)
        raise

    # the replaced blob goes only once the new row is durable
    if old_key:
        store.delete(old_key)
    return ok(submission_row(s, now), 201)
