from __future__ import annotations

from datetime import datetime, date

from compliance_api.extensions import db
from compliance_api.services.compliance_rules import (
    ComplianceStatus,
    DocumentRef,
    annual_status,
    expired_documents,
)


class AnnualDocumentSet(db.Model):
    """One subcontractor's company-wide compliance bundle for a year."""

    __tablename__ = "annual_document_sets"

    id = db.Column(db.Integer, primary_key=True)
    subcontractor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=True)  # stamped when the set is complete
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("subcontractor_id", "year", name="uq_annual_set_year"),
    )

    subcontractor = db.relationship("User", foreign_keys=[subcontractor_id])
    documents = db.relationship(
        "AnnualDocument",
        back_populates="document_set",
        cascade="all, delete-orphan",
        order_by="AnnualDocument.id",
        lazy="selectin",
    )

    @property
    def is_complete(self) -> bool:
        return self.submitted_at is not None

    def refs(self) -> list[DocumentRef]:
        return [d.as_ref() for d in self.documents]

    def find_document(self, doc_type: str) -> "AnnualDocument | None":
        return next((d for d in self.documents if d.doc_type == doc_type), None)

    def compliance_status(self, now: datetime) -> ComplianceStatus:
        return annual_status(self.year, self.refs(), now)

    def expired(self, today: date) -> list[str]:
        return expired_documents(self.refs(), today)


class AnnualDocument(db.Model):
    __tablename__ = "annual_documents"

    id = db.Column(db.Integer, primary_key=True)
    document_set_id = db.Column(
        db.Integer,
        db.ForeignKey("annual_document_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doc_type = db.Column(db.String(255), nullable=False)
    storage_path = db.Column(db.String(512), nullable=False)
    original_file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=True)
    uploaded_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("document_set_id", "doc_type", name="uq_annual_doc_type"),
    )

    document_set = db.relationship("AnnualDocumentSet", back_populates="documents")

    def as_ref(self) -> DocumentRef:
        return DocumentRef(doc_type=self.doc_type, uploaded_at=self.uploaded_at, expiry_date=self.expiry_date)
