# compliance_api/services/compliance_views.py
"""
Read-side glue between stored records and the compliance rules.

Nothing here writes to the database. Every function that reports a status
takes ``now`` so a caller can evaluate a whole page against one snapshot.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from compliance_api.common.http import iso
from compliance_api.extensions import db
from compliance_api.models.annual import AnnualDocumentSet
from compliance_api.models.project import Project, project_subcontractors
from compliance_api.models.submission import Submission
from compliance_api.services.compliance_rules import (
    ANNUAL_DOCUMENT_TYPES,
    DOCUMENTS_WITH_EXPIRY,
    MetricSet,
    SubmissionPeriod,
    annual_status,
    are_annual_documents_due,
    days_overdue,
    has_incidents,
    required_monthly_documents,
    submission_status,
)
from compliance_api.services.storage import LocalFileStore

STATE_SUBMITTED = "submitted"
STATE_PENDING = "pending"
STATE_OVERDUE = "overdue"
STATE_AT_RISK = "at_risk"


def state_label(submitted: bool, is_overdue: bool, is_at_risk: bool) -> str:
    if submitted:
        return STATE_SUBMITTED
    if is_at_risk:
        return STATE_AT_RISK
    if is_overdue:
        return STATE_OVERDUE
    return STATE_PENDING


# ---------- row shapes ----------

def document_row(d) -> Dict[str, Any]:
    return {
        "id": d.id,
        "doc_type": d.doc_type,
        "original_file_name": d.original_file_name,
        "file_size": d.file_size,
        "expiry_date": iso(d.expiry_date),
        "uploaded_at": iso(d.uploaded_at),
        "storage_path": d.storage_path,
        "download_url": LocalFileStore.url_for(d.storage_path),
    }


def submission_row(s: Submission, now: datetime) -> Dict[str, Any]:
    metrics = s.metric_set()
    status = s.compliance_status(now)
    required = required_monthly_documents(metrics)
    provided = set(s.document_types())
    return {
        "id": s.id,
        "project_id": s.project_id,
        "project_name": s.project.name if s.project else None,
        "subcontractor_id": s.subcontractor_id,
        "subcontractor_name": s.subcontractor.display_name if s.subcontractor else None,
        "month": s.month,
        "year": s.year,
        "status": s.status,
        "submitted_at": iso(s.submitted_at),
        "metrics": metrics.as_dict(),
        "has_incidents": has_incidents(metrics),
        "required_documents": [{"doc_type": t, "provided": t in provided} for t in required],
        "documents": [document_row(d) for d in s.documents],
        "compliance": status.as_dict(),
        "state": state_label(s.is_submitted, status.is_overdue, status.is_at_risk),
        "days_overdue": 0 if s.is_submitted else days_overdue(s.period, now),
        "created_at": iso(s.created_at),
        "updated_at": iso(s.updated_at),
    }


def annual_set_row(doc_set: Optional[AnnualDocumentSet], year: int, subcontractor_id: int, now: datetime) -> Dict[str, Any]:
    docs = doc_set.documents if doc_set else []
    status = doc_set.compliance_status(now) if doc_set else annual_status(year, [], now)
    by_type = {d.doc_type: d for d in docs}
    return {
        "id": doc_set.id if doc_set else None,
        "subcontractor_id": subcontractor_id,
        "year": year,
        "status": "Complete" if status.completion_percentage == 100 else "Incomplete",
        "submitted_at": iso(doc_set.submitted_at) if doc_set else None,
        "due": are_annual_documents_due(now) and now.year == year,
        "compliance": status.as_dict(),
        "expired_documents": doc_set.expired(now.date()) if doc_set else [],
        "required_documents": [
            {
                "doc_type": name,
                "needs_expiry": name in DOCUMENTS_WITH_EXPIRY,
                "provided": name in by_type,
                "expiry_date": iso(by_type[name].expiry_date) if name in by_type else None,
            }
            for name in ANNUAL_DOCUMENT_TYPES
        ],
        "documents": [document_row(d) for d in docs],
    }


# ---------- scoping ----------

def projects_for(user):
    qry = Project.query
    if user.role == "advisor":
        qry = qry.filter(Project.assigned_advisor_id == user.id)
    elif user.role == "subcontractor":
        qry = qry.join(project_subcontractors, project_subcontractors.c.project_id == Project.id).filter(
            project_subcontractors.c.subcontractor_id == user.id
        )
    return qry


def submissions_for(user):
    qry = Submission.query
    if user.role == "advisor":
        qry = qry.join(Project, Project.id == Submission.project_id).filter(
            Project.assigned_advisor_id == user.id
        )
    elif user.role == "subcontractor":
        qry = qry.filter(Submission.subcontractor_id == user.id)
    return qry


def submission_visible_to(s: Submission, user) -> bool:
    if user.role == "admin":
        return True
    if user.role == "advisor":
        return s.project is not None and s.project.assigned_advisor_id == user.id
    return s.subcontractor_id == user.id


# ---------- period grid ----------

def _submissions_by_pair(project_ids: List[int], period: SubmissionPeriod) -> Dict[tuple, Submission]:
    if not project_ids:
        return {}
    rows = Submission.query.filter(
        Submission.project_id.in_(project_ids),
        Submission.month == period.month,
        Submission.year == period.year,
    ).all()
    return {(s.project_id, s.subcontractor_id): s for s in rows}


def period_grid(projects: Iterable[Project], period: SubmissionPeriod, now: datetime) -> List[Dict[str, Any]]:
    """
    Expected-vs-actual for one period: a row per (project, subcontractor).

    A missing record is evaluated like an empty draft: no metrics, no
    documents, not submitted.
    """
    projects = list(projects)
    found = _submissions_by_pair([p.id for p in projects], period)
    out: List[Dict[str, Any]] = []
    for p in projects:
        for sub in p.subcontractors:
            s = found.get((p.id, sub.id))
            if s is not None:
                status = s.compliance_status(now)
                submitted = s.is_submitted
                incidents = s.metric_set().incident_total()
            else:
                status = submission_status(period, MetricSet(), [], False, now)
                submitted = False
                incidents = 0
            out.append({
                "project_id": p.id,
                "project_name": p.name,
                "advisor_id": p.assigned_advisor_id,
                "advisor_name": p.advisor.display_name if p.advisor else None,
                "subcontractor_id": sub.id,
                "subcontractor_name": sub.display_name,
                "month": period.month,
                "year": period.year,
                "submission_id": s.id if s is not None else None,
                "status": s.status if s is not None else None,
                "state": state_label(submitted, status.is_overdue, status.is_at_risk),
                "compliance": status.as_dict(),
                "days_overdue": 0 if submitted else days_overdue(period, now),
                "incidents": incidents,
            })
    return out


def summarize_grid(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {STATE_SUBMITTED: 0, STATE_PENDING: 0, STATE_OVERDUE: 0, STATE_AT_RISK: 0}
    for r in rows:
        counts[r["state"]] += 1
    counts["expected"] = len(rows)
    return counts


# ---------- subcontractor home ----------

def subcontractor_overview(user, now: datetime) -> Dict[str, Any]:
    current = SubmissionPeriod.from_datetime(now)
    periods = [current, current.previous()]
    projects = projects_for(user).order_by(Project.name.asc()).all()

    mine = {
        (s.project_id, s.month, s.year): s
        for s in Submission.query.filter(
            Submission.subcontractor_id == user.id,
            db.or_(*[db.and_(Submission.month == p.month, Submission.year == p.year) for p in periods]),
        ).all()
    }

    project_rows = []
    for p in projects:
        entries = []
        for period in periods:
            s = mine.get((p.id, period.month, period.year))
            if s is not None:
                entries.append(submission_row(s, now))
                continue
            status = submission_status(period, MetricSet(), [], False, now)
            entries.append({
                "id": None,
                "month": period.month,
                "year": period.year,
                "status": None,
                "compliance": status.as_dict(),
                "state": state_label(False, status.is_overdue, status.is_at_risk),
                "days_overdue": days_overdue(period, now),
            })
        project_rows.append({"project_id": p.id, "project_name": p.name, "periods": entries})

    doc_set = AnnualDocumentSet.query.filter_by(subcontractor_id=user.id, year=now.year).first()
    return {
        "as_of": now.isoformat(),
        "eligible_periods": [p.as_dict() for p in periods],
        "projects": project_rows,
        "annual": annual_set_row(doc_set, now.year, user.id, now),
    }
