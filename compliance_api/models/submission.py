from __future__ import annotations

from datetime import datetime

from compliance_api.extensions import db
from compliance_api.services.compliance_rules import (
    METRIC_FIELDS,
    STATUS_NOT_SUBMITTED,
    STATUS_SUBMITTED,
    ComplianceStatus,
    DocumentRef,
    MetricSet,
    SubmissionPeriod,
    submission_status,
)


class Submission(db.Model):
    """
    One subcontractor's monthly safety report for one project.

    Metric columns are nullable while the record is a draft; a record can
    only move to "Submitted" once all eleven are present, and is read-only
    for metrics afterwards.
    """

    __tablename__ = "submissions"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subcontractor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_NOT_SUBMITTED)

    # incident metrics
    lost_time_injuries = db.Column(db.Integer)
    medical_aid_injuries = db.Column(db.Integer)
    first_aid_injuries = db.Column(db.Integer)
    property_damage = db.Column(db.Integer)
    environmental_incidents = db.Column(db.Integer)
    near_misses = db.Column(db.Integer)
    # activity metrics
    total_worker_hours = db.Column(db.Integer)
    hazard_identifications = db.Column(db.Integer)
    safety_inspections = db.Column(db.Integer)
    toolbox_talks = db.Column(db.Integer)
    workers_site_oriented = db.Column(db.Integer)

    submitted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("project_id", "subcontractor_id", "month", "year", name="uq_submission_period"),
        db.CheckConstraint("month BETWEEN 1 AND 12", name="ck_submission_month"),
    )

    project = db.relationship("Project", backref=db.backref("submissions", lazy="dynamic"))
    subcontractor = db.relationship("User", foreign_keys=[subcontractor_id])
    documents = db.relationship(
        "SubmissionDocument",
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by="SubmissionDocument.id",
        lazy="selectin",
    )

    @property
    def period(self) -> SubmissionPeriod:
        return SubmissionPeriod(year=self.year, month=self.month)

    @property
    def is_submitted(self) -> bool:
        return self.status == STATUS_SUBMITTED

    def metric_set(self) -> MetricSet:
        return MetricSet(**{name: getattr(self, name) for name in METRIC_FIELDS})

    def apply_metrics(self, metrics: MetricSet):
        for name, value in metrics.as_dict().items():
            setattr(self, name, value)

    def document_types(self) -> list[str]:
        return [d.doc_type for d in self.documents]

    def find_document(self, doc_type: str) -> "SubmissionDocument | None":
        return next((d for d in self.documents if d.doc_type == doc_type), None)

    def compliance_status(self, now: datetime) -> ComplianceStatus:
        return submission_status(
            self.period,
            self.metric_set(),
            self.document_types(),
            self.is_submitted,
            now,
        )

    def __repr__(self) -> str:
        return f"<Submission id={self.id} project={self.project_id} sub={self.subcontractor_id} {self.month:02d}/{self.year} {self.status}>"


class SubmissionDocument(db.Model):
    __tablename__ = "submission_documents"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer,
        db.ForeignKey("submissions.id", ondelete="CASCADE"),
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
        db.UniqueConstraint("submission_id", "doc_type", name="uq_submission_doc_type"),
    )

    submission = db.relationship("Submission", back_populates="documents")

    def as_ref(self) -> DocumentRef:
        return DocumentRef(doc_type=self.doc_type, uploaded_at=self.uploaded_at, expiry_date=self.expiry_date)
