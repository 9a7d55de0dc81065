# compliance_api/blueprints/files.py
import posixpath

from flask import Blueprint, send_file

from compliance_api.common.auth import requires_roles, current_user
from compliance_api.common.http import fail
from compliance_api.models.annual import AnnualDocument
from compliance_api.models.submission import SubmissionDocument
from compliance_api.services.storage import FileRejected, get_store

bp = Blueprint("files", __name__, url_prefix="/api/v1/files")


def _clean_key(key: str):
    """The key as stored, or None when it is not in canonical form (``..``, ``.``, ``//``)."""
    if not key or key.startswith("/") or ".." in key.split("/"):
        return None
    if posixpath.normpath(key) != key:
        return None
    return key


def _document_for(key: str):
    """
    Resolve a key to the record that owns it; the record decides who may read.

      submission document  owner, project advisor, admin
      annual document      owner, admin
    """
    doc = SubmissionDocument.query.filter_by(storage_path=key).first()
    if doc is not None:
        s = doc.submission
        return doc, s.subcontractor_id, (s.project.assigned_advisor_id if s.project else None)
    doc = AnnualDocument.query.filter_by(storage_path=key).first()
    if doc is not None:
        return doc, doc.document_set.subcontractor_id, None
    return None, None, None


def _may_read(user, owner_id, advisor_id) -> bool:
    if user.role == "admin":
        return True
    if user.role == "advisor":
        return advisor_id is not None and advisor_id == user.id
    return owner_id == user.id


@bp.get("/<path:key>")
@requires_roles()
def download(key: str):
    key = _clean_key(key)
    if key is None:
        return fail("File not found", 404)
    doc, owner_id, advisor_id = _document_for(key)
    if doc is None or not _may_read(current_user(), owner_id, advisor_id):
        return fail("File not found", 404)

    store = get_store()
    try:
        path = store.open_path(key)
    except FileRejected:
        return fail("File not found", 404)
    if not store.exists(key):
        return fail("File not found", 404)
    return send_file(path, as_attachment=True, download_name=doc.original_file_name)
