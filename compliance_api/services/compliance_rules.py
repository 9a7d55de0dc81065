# compliance_api/services/compliance_rules.py
"""
Compliance rules for monthly safety submissions and annual document sets.

Everything here is a pure function of its arguments. Callers pass the
current time explicitly (``now``) so a whole dashboard render can share one
snapshot and tests never depend on the wall clock.

Time windows for a monthly period (month M of year Y):

  * submission window : current month of ``now`` and the month before it
  * overdue           : ``now`` strictly after 00:00 on the 7th of M+1
  * at risk           : ``now`` strictly after 00:00 on the 14th of M+1

Completion percentage weights metrics and documents 50/50 and rounds
half-up (12.5 -> 13), never banker's rounding.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime, time, timedelta, MAXYEAR, MINYEAR
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional


class InvalidArgument(ValueError):
    """Raised for inputs outside the rules' domain (bad month, negative counts...)."""


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

STATUS_SUBMITTED = "Submitted"
STATUS_NOT_SUBMITTED = "Not Submitted"
SUBMISSION_STATUSES = (STATUS_SUBMITTED, STATUS_NOT_SUBMITTED)

INCIDENT_METRICS = (
    "lost_time_injuries",
    "medical_aid_injuries",
    "first_aid_injuries",
    "property_damage",
    "environmental_incidents",
    "near_misses",
)
ACTIVITY_METRICS = (
    "total_worker_hours",
    "hazard_identifications",
    "safety_inspections",
    "toolbox_talks",
    "workers_site_oriented",
)
METRIC_FIELDS = INCIDENT_METRICS + ACTIVITY_METRICS
TOTAL_METRICS = len(METRIC_FIELDS)  # 11

INCIDENT_REPORT = "Incident Investigation Report"

MONTHLY_DOCUMENT_TYPES = (
    "Daily Hazard Assessments (FLRA/PWHA)",
    "Safety Inspection Reports",
    "Toolbox Talk Attendance Sheet",
    "Equipment Pre-Use Inspection Forms",
)

WSIB_CERTIFICATE = "Valid WSIB Clearance Certificate"
LIABILITY_INSURANCE = "Proof of Liability Insurance"
DOCUMENTS_WITH_EXPIRY = (WSIB_CERTIFICATE, LIABILITY_INSURANCE)

ANNUAL_DOCUMENT_TYPES = (
    # Policies and procedures
    "Health & Safety Policy Statement",
    "Violence and Harassment Policy Statement",
    "Full Violence and Harassment Policy and Procedure",
    "Hazard Identification and Risk Assessment Procedure",
    "Incident and Accident Reporting and Investigation Procedure",
    "Emergency Response Plan",
    # Training and records
    "Five (5) samples of recent Daily Hazard Assessments",
    "Supervisor Training Records",
    "Three (3) samples of recent Job Site Inspections",
    WSIB_CERTIFICATE,
    "Current Company Health and Safety Manual",
    LIABILITY_INSURANCE,
    # Compliance and safety
    "Signed Acknowledgement of Site Rules",
    "Training Certificates for Workers",
    "Fit for Duty Policy",
    "Disciplinary Policy for Health and Safety Violations",
    "Minutes from Recent Safety Meeting/JHSC Meeting",
    "List of All Workers Assigned to the project",
)

OVERDUE_DAY_OF_NEXT_MONTH = 7
AT_RISK_GRACE = timedelta(days=7)
ANNUAL_DUE_MONTH = 1


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

def _check_int(name: str, value: Any) -> int:
    # bool is an int subclass; True is not a month
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer")
    return value


@dataclass(frozen=True, order=True)
class SubmissionPeriod:
    """One reporting month. Ordering is chronological (year, then month)."""

    year: int
    month: int

    def __post_init__(self):
        _check_int("year", self.year)
        _check_int("month", self.month)
        if not 1 <= self.month <= 12:
            raise InvalidArgument(f"month must be between 1 and 12, got {self.month}")
        # keep one month of headroom either side so next()/previous() stay valid
        if not MINYEAR < self.year < MAXYEAR:
            raise InvalidArgument(f"year out of range: {self.year}")

    @classmethod
    def from_datetime(cls, now: date) -> "SubmissionPeriod":
        return cls(year=now.year, month=now.month)

    def previous(self) -> "SubmissionPeriod":
        if self.month == 1:
            return SubmissionPeriod(year=self.year - 1, month=12)
        return SubmissionPeriod(year=self.year, month=self.month - 1)

    def next(self) -> "SubmissionPeriod":
        if self.month == 12:
            return SubmissionPeriod(year=self.year + 1, month=1)
        return SubmissionPeriod(year=self.year, month=self.month + 1)

    @property
    def key(self) -> str:
        """Storage-friendly label, e.g. ``03_2024``."""
        return f"{self.month:02d}_{self.year}"

    def as_dict(self) -> Dict[str, int]:
        return {"month": self.month, "year": self.year}


@dataclass(frozen=True)
class MetricSet:
    """
    The eleven monthly safety metrics.

    A field left as ``None`` has not been provided yet (draft submissions).
    Provided values must be non-negative integers.
    """

    lost_time_injuries: Optional[int] = None
    medical_aid_injuries: Optional[int] = None
    first_aid_injuries: Optional[int] = None
    property_damage: Optional[int] = None
    environmental_incidents: Optional[int] = None
    near_misses: Optional[int] = None
    total_worker_hours: Optional[int] = None
    hazard_identifications: Optional[int] = None
    safety_inspections: Optional[int] = None
    toolbox_talks: Optional[int] = None
    workers_site_oriented: Optional[int] = None

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            _check_int(f.name, value)
            if value < 0:
                raise InvalidArgument(f"{f.name} must be 0 or greater")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MetricSet":
        unknown = sorted(set(data) - set(METRIC_FIELDS))
        if unknown:
            raise InvalidArgument(f"unknown metric fields: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def zeros(cls) -> "MetricSet":
        return cls(**{name: 0 for name in METRIC_FIELDS})

    def as_dict(self) -> Dict[str, Optional[int]]:
        return {name: getattr(self, name) for name in METRIC_FIELDS}

    def provided_count(self) -> int:
        return sum(1 for name in METRIC_FIELDS if getattr(self, name) is not None)

    def is_complete(self) -> bool:
        return self.provided_count() == TOTAL_METRICS

    def incident_total(self) -> int:
        return sum(getattr(self, name) or 0 for name in INCIDENT_METRICS)


@dataclass(frozen=True)
class DocumentRef:
    doc_type: str
    uploaded_at: Optional[datetime] = None
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class AnnualRequirement:
    name: str
    needs_expiry: bool

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "needs_expiry": self.needs_expiry}


@dataclass(frozen=True)
class ComplianceStatus:
    """Derived view; recomputed on demand and never stored."""

    is_overdue: bool
    is_at_risk: bool
    completion_percentage: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_overdue": self.is_overdue,
            "is_at_risk": self.is_at_risk,
            "completion_percentage": self.completion_percentage,
        }


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _as_datetime(now: Any) -> datetime:
    if isinstance(now, datetime):
        return now
    if isinstance(now, date):
        return datetime.combine(now, time.min)
    raise InvalidArgument("now must be a datetime")


def _as_metrics(metrics: Any) -> MetricSet:
    if isinstance(metrics, MetricSet):
        return metrics
    if isinstance(metrics, Mapping):
        return MetricSet.from_mapping(metrics)
    raise InvalidArgument("metrics must be a MetricSet or a mapping of metric fields")


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

def can_submit_for_period(period: SubmissionPeriod, now: datetime) -> bool:
    """True for the month of ``now`` and the one before it (December in January)."""
    current = SubmissionPeriod.from_datetime(_as_datetime(now))
    return period == current or period == current.previous()


def eligible_periods(now: datetime) -> List[SubmissionPeriod]:
    current = SubmissionPeriod.from_datetime(_as_datetime(now))
    return [current, current.previous()]


def are_annual_documents_due(now: datetime) -> bool:
    return _as_datetime(now).month == ANNUAL_DUE_MONTH


def overdue_threshold(period: SubmissionPeriod, tzinfo=None) -> datetime:
    nxt = period.next()
    return datetime(nxt.year, nxt.month, OVERDUE_DAY_OF_NEXT_MONTH, tzinfo=tzinfo)


def at_risk_threshold(period: SubmissionPeriod, tzinfo=None) -> datetime:
    return overdue_threshold(period, tzinfo) + AT_RISK_GRACE


def is_overdue(period: SubmissionPeriod, now: datetime) -> bool:
    now = _as_datetime(now)
    return now > overdue_threshold(period, now.tzinfo)


def is_at_risk(period: SubmissionPeriod, now: datetime) -> bool:
    now = _as_datetime(now)
    return now > at_risk_threshold(period, now.tzinfo)


def days_overdue(period: SubmissionPeriod, now: datetime) -> int:
    """Whole days elapsed since the overdue threshold; 0 when not overdue."""
    now = _as_datetime(now)
    threshold = overdue_threshold(period, now.tzinfo)
    if now <= threshold:
        return 0
    return (now - threshold).days


def submitted_on_time(period: SubmissionPeriod, submitted_at: datetime) -> bool:
    submitted_at = _as_datetime(submitted_at)
    return submitted_at <= overdue_threshold(period, submitted_at.tzinfo)


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

def calculate_completion_percentage(
    metrics_provided: int,
    documents_provided: int,
    total_documents_required: int,
) -> int:
    _check_int("metrics_provided", metrics_provided)
    _check_int("documents_provided", documents_provided)
    _check_int("total_documents_required", total_documents_required)
    if not 0 <= metrics_provided <= TOTAL_METRICS:
        raise InvalidArgument(f"metrics_provided must be between 0 and {TOTAL_METRICS}")
    if total_documents_required < 0:
        raise InvalidArgument("total_documents_required must be 0 or greater")
    if not 0 <= documents_provided <= total_documents_required:
        raise InvalidArgument("documents_provided must be between 0 and total_documents_required")

    half = Decimal(50)
    metrics_part = Decimal(metrics_provided) / Decimal(TOTAL_METRICS) * half
    documents_part = Decimal(0)
    if total_documents_required:
        documents_part = Decimal(documents_provided) / Decimal(total_documents_required) * half
    return round_half_up(metrics_part + documents_part)


def has_incidents(metrics: MetricSet) -> bool:
    m = _as_metrics(metrics)
    return any((getattr(m, name) or 0) > 0 for name in INCIDENT_METRICS)


def required_monthly_documents(metrics: MetricSet) -> List[str]:
    docs = list(MONTHLY_DOCUMENT_TYPES)
    if has_incidents(metrics):
        docs.append(INCIDENT_REPORT)
    return docs


def required_annual_documents() -> List[AnnualRequirement]:
    return [AnnualRequirement(name, name in DOCUMENTS_WITH_EXPIRY) for name in ANNUAL_DOCUMENT_TYPES]


def count_metrics_provided(metrics: MetricSet) -> int:
    return _as_metrics(metrics).provided_count()


def count_documents_provided(required: Iterable[str], provided_doc_types: Iterable[str]) -> int:
    return len(set(required) & set(provided_doc_types))


def submission_status(
    period: SubmissionPeriod,
    metrics: MetricSet,
    provided_doc_types: Iterable[str],
    submitted: bool,
    now: datetime,
) -> ComplianceStatus:
    """Status of one monthly record. A submitted record is never overdue."""
    m = _as_metrics(metrics)
    required = required_monthly_documents(m)
    pct = calculate_completion_percentage(
        count_metrics_provided(m),
        count_documents_provided(required, provided_doc_types),
        len(required),
    )
    if submitted:
        return ComplianceStatus(is_overdue=False, is_at_risk=False, completion_percentage=pct)
    return ComplianceStatus(
        is_overdue=is_overdue(period, now),
        is_at_risk=is_at_risk(period, now),
        completion_percentage=pct,
    )


# ---------------------------------------------------------------------------
# Annual documents
# ---------------------------------------------------------------------------

def annual_overdue_threshold(year: int, tzinfo=None) -> datetime:
    _check_int("year", year)
    if not MINYEAR <= year <= MAXYEAR:
        raise InvalidArgument(f"year out of range: {year}")
    # due during January; late from February 1st
    return datetime(year, ANNUAL_DUE_MONTH + 1, 1, tzinfo=tzinfo)


def annual_documents_provided(documents: Iterable[DocumentRef]) -> List[str]:
    """Catalog items satisfied by ``documents``; expiry items need an expiry date."""
    have = set()
    for doc in documents:
        if doc.doc_type not in ANNUAL_DOCUMENT_TYPES:
            continue
        if doc.doc_type in DOCUMENTS_WITH_EXPIRY and doc.expiry_date is None:
            continue
        have.add(doc.doc_type)
    return [name for name in ANNUAL_DOCUMENT_TYPES if name in have]


def annual_completion_percentage(documents_provided: int) -> int:
    _check_int("documents_provided", documents_provided)
    total = len(ANNUAL_DOCUMENT_TYPES)
    if not 0 <= documents_provided <= total:
        raise InvalidArgument(f"documents_provided must be between 0 and {total}")
    return round_half_up(Decimal(documents_provided) / Decimal(total) * Decimal(100))


def annual_status(year: int, documents: Iterable[DocumentRef], now: datetime) -> ComplianceStatus:
    now = _as_datetime(now)
    pct = annual_completion_percentage(len(annual_documents_provided(documents)))
    if pct == 100:
        return ComplianceStatus(is_overdue=False, is_at_risk=False, completion_percentage=pct)
    threshold = annual_overdue_threshold(year, now.tzinfo)
    return ComplianceStatus(
        is_overdue=now > threshold,
        is_at_risk=now > threshold + AT_RISK_GRACE,
        completion_percentage=pct,
    )


def expired_documents(documents: Iterable[DocumentRef], today: date) -> List[str]:
    if isinstance(today, datetime):
        today = today.date()
    return sorted(
        doc.doc_type
        for doc in documents
        if doc.doc_type in DOCUMENTS_WITH_EXPIRY
        and doc.expiry_date is not None
        and doc.expiry_date < today
    )
