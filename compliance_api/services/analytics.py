# compliance_api/services/analytics.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Font

from compliance_api.services.compliance_rules import (
    STATUS_NOT_SUBMITTED,
    SubmissionPeriod,
    days_overdue,
    is_at_risk,
    is_overdue,
    round_half_up,
    submitted_on_time,
)

log = logging.getLogger(__name__)

TOP_PERFORMERS = 5


def _rate(part: int, whole: int) -> int:
    if not whole:
        return 0
    return round_half_up(Decimal(part) / Decimal(whole) * Decimal(100))


def _incidents_in(submissions, period: SubmissionPeriod) -> int:
    return sum(
        s.metric_set().incident_total()
        for s in submissions
        if s.month == period.month and s.year == period.year
    )


def build_admin_analytics(users: Iterable, projects: Iterable, submissions: Iterable, now: datetime) -> Dict[str, Any]:
    """
    Admin dashboard numbers.

    Rates are percentages over *stored* submission records. At-risk projects
    also consider the period before ``now`` for every assigned subcontractor,
    so a subcontractor who never opened a report still shows up.
    """
    users = list(users)
    projects = list(projects)
    submissions = list(submissions)

    submitted = [s for s in submissions if s.is_submitted]
    pending = [s for s in submissions if not s.is_submitted]
    overdue = [s for s in pending if is_overdue(s.period, now)]
    on_time = [s for s in submitted if s.submitted_at and submitted_on_time(s.period, s.submitted_at)]

    # incident trend: last closed month vs the one before it
    last = SubmissionPeriod.from_datetime(now).previous()
    prior = last.previous()
    last_incidents = _incidents_in(submissions, last)
    prior_incidents = _incidents_in(submissions, prior)

    by_sub: Dict[int, List] = defaultdict(list)
    for s in submissions:
        by_sub[s.subcontractor_id].append(s)

    performers = []
    for u in users:
        if u.role != "subcontractor":
            continue
        mine = by_sub.get(u.id, [])
        done = sum(1 for s in mine if s.is_submitted)
        performers.append({
            "subcontractor_id": u.id,
            "name": u.display_name,
            "submissions": len(mine),
            "compliance_rate": _rate(done, len(mine)),
        })
    performers.sort(key=lambda r: (-r["compliance_rate"], r["name"].lower()))

    return {
        "as_of": now.isoformat(),
        "total_users": len(users),
        "users_by_role": _count_by(users, "role"),
        "total_projects": len(projects),
        "total_submissions": len(submissions),
        "submissions_by_status": {
            "submitted": len(submitted),
            "pending": len(pending),
            "overdue": len(overdue),
        },
        "compliance_rate": _rate(len(submitted), len(submissions)),
        "on_time_rate": _rate(len(on_time), len(submissions)),
        "incident_trends": {
            "total_incidents": sum(s.metric_set().incident_total() for s in submissions),
            "last_period": last.as_dict(),
            "last_period_incidents": last_incidents,
            "prior_period_incidents": prior_incidents,
            "month_over_month": last_incidents - prior_incidents,
        },
        "top_performers": performers[:TOP_PERFORMERS],
        "at_risk_projects": at_risk_projects(projects, submissions, now),
    }


def _count_by(rows, attr: str) -> Dict[str, int]:
    out: Dict[str, int] = defaultdict(int)
    for r in rows:
        out[getattr(r, attr)] += 1
    return dict(out)


def at_risk_projects(projects: Iterable, submissions: Iterable, now: datetime) -> List[Dict[str, Any]]:
    """Projects with at least one unsubmitted, at-risk period; worst first."""
    expected_period = SubmissionPeriod.from_datetime(now).previous()
    stored = {(s.project_id, s.subcontractor_id, s.year, s.month): s for s in submissions}

    out = []
    for p in projects:
        late: Dict[tuple, int] = {}
        # stored drafts, any period
        for (pid, sid, year, month), s in stored.items():
            if pid != p.id or s.status != STATUS_NOT_SUBMITTED:
                continue
            if is_at_risk(s.period, now):
                late[(sid, year, month)] = days_overdue(s.period, now)
        # missing records for the period that is currently due
        for sub in p.subcontractors:
            k = (p.id, sub.id, expected_period.year, expected_period.month)
            if k not in stored and is_at_risk(expected_period, now):
                late[(sub.id, expected_period.year, expected_period.month)] = days_overdue(expected_period, now)
        if late:
            out.append({
                "project_id": p.id,
                "project_name": p.name,
                "late_reports": len(late),
                "days_overdue": max(late.values()),
            })
    out.sort(key=lambda r: (-r["days_overdue"], r["project_name"]))
    return out


# ---------- Excel register ----------

REGISTER_HEADERS = [
    "PROJECT", "ADVISOR", "SUBCONTRACTOR", "MONTH", "YEAR", "STATUS", "STATE",
    "COMPLETION %", "OVERDUE", "AT RISK", "DAYS OVERDUE", "INCIDENTS",
]


def build_register_workbook(rows: List[Dict[str, Any]], period: SubmissionPeriod) -> BytesIO:
    """Stream a compliance register (one line per project/subcontractor) as xlsx."""
    wb = Workbook()
    ws = wb.active
    ws.title = f"Register {period.key}"
    ws.append(REGISTER_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in rows:
        comp = r.get("compliance") or {}
        ws.append([
            r.get("project_name"),
            r.get("advisor_name"),
            r.get("subcontractor_name"),
            r.get("month"),
            r.get("year"),
            r.get("status") or STATUS_NOT_SUBMITTED,
            r.get("state"),
            comp.get("completion_percentage"),
            "YES" if comp.get("is_overdue") else "NO",
            "YES" if comp.get("is_at_risk") else "NO",
            r.get("days_overdue"),
            r.get("incidents"),
        ])

    # Summary sheet
    ws_sum = wb.create_sheet("Summary")
    ws_sum.append(["STATE", "COUNT"])
    counts: Dict[str, int] = defaultdict(int)
    for r in rows:
        counts[r.get("state")] += 1
    for state in ("submitted", "pending", "overdue", "at_risk"):
        ws_sum.append([state, counts.get(state, 0)])
    ws_sum.append(["TOTAL", len(rows)])

    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    log.info("compliance register built: %d rows for %s", len(rows), period.key)
    return bio
