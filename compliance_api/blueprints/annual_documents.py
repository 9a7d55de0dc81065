# compliance_api/blueprints/annual_documents.py
from __future__ import annotations

import logging
from datetime import date

from flask import Blueprint, request

from compliance_api.common.auth import requires_roles, current_user
from compliance_api.common.clock import request_now
from compliance_api.common.http import ok, fail
from compliance_api.common.paging import page_limit
from compliance_api.extensions import db
from compliance_api.models.annual import AnnualDocument, AnnualDocumentSet
from compliance_api.models.user import User, ROLE_ADMIN, ROLE_SUBCONTRACTOR
from compliance_api.services.compliance_rules import (
    ANNUAL_DOCUMENT_TYPES,
    DOCUMENTS_WITH_EXPIRY,
    annual_documents_provided,
)
from compliance_api.services.compliance_views import annual_set_row
from compliance_api.services.storage import get_store

log = logging.getLogger(__name__)

bp = Blueprint("annual_documents", __name__, url_prefix="/api/v1/annual-documents")

MIN_YEAR, MAX_YEAR = 2000, 2100


def _year_ok(year: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR


def _parse_date(raw: str | None):
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        return None


@bp.get("")
@requires_roles(ROLE_ADMIN)
def list_annual_sets():
    """One row per subcontractor for ?year= (default: current year), stored set or not."""
    now = request_now()
    year = request.args.get("year", type=int) or now.year
    if not _year_ok(year):
        return fail("year out of range", 422)

    qry = User.query.filter(User.role == ROLE_SUBCONTRACTOR)
    subcontractor_id = request.args.get("subcontractor_id", type=int)
    if subcontractor_id:
        qry = qry.filter(User.id == subcontractor_id)

    page, size = page_limit()
    total = qry.count()
    subs = qry.order_by(User.company_name.asc(), User.id.asc()).offset((page - 1) * size).limit(size).all()

    sets = {
        x.subcontractor_id: x
        for x in AnnualDocumentSet.query.filter(
            AnnualDocumentSet.year == year,
            AnnualDocumentSet.subcontractor_id.in_([u.id for u in subs] or [0]),
        ).all()
    }
    rows = []
    for u in subs:
        row = annual_set_row(sets.get(u.id), year, u.id, now)
        row["subcontractor_name"] = u.display_name
        rows.append(row)
    return ok(rows, page=page, size=size, total=total, year=year)


@bp.get("/<int:year>")
@requires_roles(ROLE_SUBCONTRACTOR)
def get_own_set(year: int):
    user = current_user()
    if user.role != ROLE_SUBCONTRACTOR:
        return fail("Only subcontractors hold annual document sets", 403)
    if not _year_ok(year):
        return fail("year out of range", 422)
    doc_set = AnnualDocumentSet.query.filter_by(subcontractor_id=user.id, year=year).first()
    return ok(annual_set_row(doc_set, year, user.id, request_now()))


@bp.post("/<int:year>/documents")
@requires_roles(ROLE_SUBCONTRACTOR)
def upload_annual_document(year: int):
    """
    multipart/form-data: file, doc_type, expiry_date (YYYY-MM-DD; required for
    the WSIB certificate and liability insurance).

    Documents can be replaced until the set is complete; a complete set is read-only.
    """
    user = current_user()
    if user.role != ROLE_SUBCONTRACTOR:
        return fail("Only subcontractors hold annual document sets", 403)
    if not _year_ok(year):
        return fail("year out of range", 422)
    now = request_now()

    doc_type = (request.form.get("doc_type") or "").strip()
    if doc_type not in ANNUAL_DOCUMENT_TYPES:
        return fail("doc_type is not an annual compliance document", 422)

    expiry = None
    raw_expiry = request.form.get("expiry_date")
    if raw_expiry:
        expiry = _parse_date(raw_expiry)
        if expiry is None:
            return fail("expiry_date must be YYYY-MM-DD", 422)
    if doc_type in DOCUMENTS_WITH_EXPIRY and expiry is None:
        return fail(f"expiry_date is required for {doc_type}", 422, code="EXPIRY_REQUIRED")

    f = request.files.get("file")
    if f is None or not f.filename:
        return fail("file is required", 422)

    doc_set = AnnualDocumentSet.query.filter_by(subcontractor_id=user.id, year=year).first()
    if doc_set is not None and doc_set.is_complete:
        return fail("Annual documents for this year are complete and locked", 409, code="SET_LOCKED")

    store = get_store()
    key = store.annual_key(user.id, year, f.filename)
    size = store.save(f, key)
    old_key = None

    try:
        if doc_set is None:
            doc_set = AnnualDocumentSet(subcontractor_id=user.id, year=year)
            db.session.add(doc_set)

        existing = doc_set.find_document(doc_type)
        if existing is not None:
            old_key = existing.storage_path
            doc_set.documents.remove(existing)
            db.session.flush()

        doc_set.documents.append(AnnualDocument(
            doc_type=doc_type,
            storage_path=key,
            original_file_name=f.filename,
            file_size=size,
            expiry_date=expiry if doc_type in DOCUMENTS_WITH_EXPIRY else None,
            uploaded_at=now,
        ))

        if len(annual_documents_provided(doc_set.refs())) == len(ANNUAL_DOCUMENT_TYPES):
            doc_set.submitted_at = now
            log.info("annual set %s/%s complete", user.id, year)

        db.session.commit()
    except Exception:
        db.session.rollback()
        store.delete(key)
        raise

    if old_key:
        store.delete(old_key)
    return ok(annual_set_row(doc_set, year, user.id, now), 201)
