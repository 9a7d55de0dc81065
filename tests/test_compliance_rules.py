from datetime import date, datetime, timedelta, timezone

import pytest

from compliance_api.services.compliance_rules import (
    ANNUAL_DOCUMENT_TYPES,
    DOCUMENTS_WITH_EXPIRY,
    INCIDENT_METRICS,
    INCIDENT_REPORT,
    LIABILITY_INSURANCE,
    METRIC_FIELDS,
    MONTHLY_DOCUMENT_TYPES,
    WSIB_CERTIFICATE,
    DocumentRef,
    InvalidArgument,
    MetricSet,
    SubmissionPeriod,
    annual_completion_percentage,
    annual_documents_provided,
    annual_status,
    are_annual_documents_due,
    at_risk_threshold,
    calculate_completion_percentage,
    can_submit_for_period,
    count_documents_provided,
    count_metrics_provided,
    days_overdue,
    eligible_periods,
    expired_documents,
    has_incidents,
    is_at_risk,
    is_overdue,
    overdue_threshold,
    required_annual_documents,
    required_monthly_documents,
    submission_status,
    submitted_on_time,
)

P = SubmissionPeriod


# ---------- periods ----------

def test_period_navigation_wraps_years():
    assert P(2024, 1).previous() == P(2023, 12)
    assert P(2024, 12).next() == P(2025, 1)
    assert P(2024, 3).key == "03_2024"
    assert P(2023, 12) < P(2024, 1) < P(2024, 2)


@pytest.mark.parametrize("year,month", [(2024, 0), (2024, 13), (2024, "3"), ("2024", 3), (2024, True), (2024, 3.0)])
def test_period_rejects_bad_values(year, month):
    with pytest.raises(InvalidArgument):
        SubmissionPeriod(year=year, month=month)


def test_invalid_argument_is_a_value_error():
    assert issubclass(InvalidArgument, ValueError)


# ---------- submission window ----------

def test_current_and_previous_month_are_open():
    now = datetime(2024, 4, 15, 12, 0)
    assert can_submit_for_period(P(2024, 4), now)
    assert can_submit_for_period(P(2024, 3), now)


def test_future_and_older_periods_are_closed():
    now = datetime(2024, 4, 15, 12, 0)
    assert not can_submit_for_period(P(2024, 5), now)
    assert not can_submit_for_period(P(2024, 2), now)
    assert not can_submit_for_period(P(2023, 4), now)
    assert not can_submit_for_period(P(2025, 3), now)


def test_january_accepts_december_of_previous_year():
    now = datetime(2025, 1, 3, 9, 0)
    assert can_submit_for_period(P(2025, 1), now)
    assert can_submit_for_period(P(2024, 12), now)
    assert not can_submit_for_period(P(2024, 11), now)
    assert not can_submit_for_period(P(2024, 1), now)


def test_eligible_periods_lists_current_then_previous():
    assert eligible_periods(datetime(2025, 1, 20)) == [P(2025, 1), P(2024, 12)]


def test_annual_documents_due_only_in_january():
    for month in range(1, 13):
        assert are_annual_documents_due(datetime(2024, month, 10)) is (month == 1)


# ---------- overdue / at risk ----------

def test_overdue_is_strictly_after_the_seventh():
    period = P(2024, 3)
    assert overdue_threshold(period) == datetime(2024, 4, 7)
    assert not is_overdue(period, datetime(2024, 4, 6, 23, 59, 59))
    assert not is_overdue(period, datetime(2024, 4, 7, 0, 0, 0))
    assert is_overdue(period, datetime(2024, 4, 7, 0, 0, 0, 1))


def test_at_risk_starts_after_the_fourteenth():
    period = P(2024, 3)
    assert at_risk_threshold(period) == datetime(2024, 4, 14)
    assert not is_at_risk(period, datetime(2024, 4, 14, 0, 0, 0))
    assert is_at_risk(period, datetime(2024, 4, 14, 0, 0, 1))


def test_december_thresholds_roll_into_next_year():
    period = P(2024, 12)
    assert overdue_threshold(period) == datetime(2025, 1, 7)
    assert at_risk_threshold(period) == datetime(2025, 1, 14)
    assert is_overdue(period, datetime(2025, 1, 8))
    assert not is_at_risk(period, datetime(2025, 1, 8))


def test_at_risk_implies_overdue():
    period = P(2024, 2)
    start = datetime(2024, 2, 1)
    for hours in range(0, 24 * 60, 7):
        now = start + timedelta(hours=hours)
        if is_at_risk(period, now):
            assert is_overdue(period, now)


def test_aware_clock_gets_aware_thresholds():
    utc = timezone.utc
    assert overdue_threshold(P(2024, 3), utc).tzinfo is utc
    assert is_overdue(P(2024, 3), datetime(2024, 4, 8, tzinfo=utc))
    assert not is_overdue(P(2024, 3), datetime(2024, 4, 6, tzinfo=utc))


def test_plain_date_counts_as_midnight():
    assert not is_overdue(P(2024, 3), date(2024, 4, 7))
    assert is_overdue(P(2024, 3), date(2024, 4, 8))


def test_now_must_be_a_datetime():
    with pytest.raises(InvalidArgument):
        is_overdue(P(2024, 3), "2024-04-08")


def test_days_overdue_counts_whole_days():
    period = P(2024, 3)
    assert days_overdue(period, datetime(2024, 4, 7)) == 0
    assert days_overdue(period, datetime(2024, 4, 7, 23, 0)) == 0
    assert days_overdue(period, datetime(2024, 4, 8)) == 1
    assert days_overdue(period, datetime(2024, 4, 20, 12, 0)) == 13


def test_submitted_on_time_includes_the_threshold_instant():
    period = P(2024, 3)
    assert submitted_on_time(period, datetime(2024, 4, 7))
    assert not submitted_on_time(period, datetime(2024, 4, 7, 0, 0, 1))


# ---------- completion ----------

@pytest.mark.parametrize("metrics,docs,total,expected", [
    (11, 5, 5, 100),
    (0, 0, 5, 0),
    (6, 3, 5, 57),
    (0, 1, 4, 13),   # 12.5 rounds up
    (5, 2, 4, 48),
    (11, 0, 0, 50),
    (0, 0, 0, 0),
    (11, 4, 4, 100),
])
def test_completion_percentage(metrics, docs, total, expected):
    assert calculate_completion_percentage(metrics, docs, total) == expected


@pytest.mark.parametrize("metrics,docs,total", [
    (12, 0, 4),
    (-1, 0, 4),
    (0, 5, 4),
    (0, -1, 4),
    (0, 0, -1),
    (True, 0, 4),
    (1.5, 0, 4),
])
def test_completion_rejects_out_of_range_inputs(metrics, docs, total):
    with pytest.raises(InvalidArgument):
        calculate_completion_percentage(metrics, docs, total)


def test_completion_is_idempotent():
    first = calculate_completion_percentage(7, 2, 5)
    assert all(calculate_completion_percentage(7, 2, 5) == first for _ in range(5))


# ---------- metrics and incidents ----------

@pytest.mark.parametrize("name", INCIDENT_METRICS)
def test_any_incident_metric_counts(name):
    assert has_incidents(MetricSet(**{name: 1}))


def test_activity_metrics_are_not_incidents():
    assert not has_incidents(MetricSet(total_worker_hours=1200, toolbox_talks=4, safety_inspections=2))
    assert not has_incidents(MetricSet.zeros())
    assert not has_incidents(MetricSet())


def test_has_incidents_accepts_a_mapping():
    assert has_incidents({"near_misses": 2})
    assert not has_incidents({"near_misses": 0})


def test_metric_set_validation():
    with pytest.raises(InvalidArgument):
        MetricSet(near_misses=-1)
    with pytest.raises(InvalidArgument):
        MetricSet(near_misses=True)
    with pytest.raises(InvalidArgument):
        MetricSet(toolbox_talks="4")
    with pytest.raises(InvalidArgument):
        MetricSet.from_mapping({"near_misses": 1, "paper_cuts": 3})


def test_metric_set_counts():
    m = MetricSet(lost_time_injuries=0, near_misses=3, total_worker_hours=900)
    assert m.provided_count() == 3
    assert not m.is_complete()
    assert m.incident_total() == 3
    assert MetricSet.zeros().is_complete()


def test_count_metrics_provided_counts_zero_as_provided():
    assert count_metrics_provided(MetricSet(near_misses=0, toolbox_talks=3)) == 2
    assert count_metrics_provided({"near_misses": 0, "toolbox_talks": None}) == 1
    assert count_metrics_provided(MetricSet.zeros()) == len(METRIC_FIELDS)
    with pytest.raises(InvalidArgument):
        count_metrics_provided([1, 2])


def test_required_monthly_documents_without_incidents():
    docs = required_monthly_documents(MetricSet.zeros())
    assert docs == list(MONTHLY_DOCUMENT_TYPES)
    assert len(docs) == 4
    assert INCIDENT_REPORT not in docs


def test_required_monthly_documents_with_incidents():
    docs = required_monthly_documents(MetricSet(property_damage=1))
    assert len(docs) == 5
    assert docs[-1] == INCIDENT_REPORT


def test_document_count_ignores_unknown_and_repeated_types():
    provided = [MONTHLY_DOCUMENT_TYPES[0], MONTHLY_DOCUMENT_TYPES[0], "Holiday Photos"]
    assert count_documents_provided(MONTHLY_DOCUMENT_TYPES, provided) == 1


# ---------- submission status ----------

def test_draft_status_follows_the_clock():
    status = submission_status(P(2024, 3), MetricSet.zeros(), MONTHLY_DOCUMENT_TYPES, False, datetime(2024, 4, 20))
    assert status.is_overdue and status.is_at_risk
    assert status.completion_percentage == 100


def test_submitted_record_is_never_late():
    status = submission_status(P(2024, 3), MetricSet.zeros(), [], True, datetime(2024, 6, 1))
    assert not status.is_overdue
    assert not status.is_at_risk
    assert status.completion_percentage == 50


def test_incident_report_is_part_of_completion():
    metrics = MetricSet.from_mapping({**MetricSet.zeros().as_dict(), "near_misses": 1})
    status = submission_status(P(2024, 3), metrics, MONTHLY_DOCUMENT_TYPES, False, datetime(2024, 4, 2))
    # 50 for metrics + 4/5 of 50 for documents
    assert status.completion_percentage == 90
    assert status.as_dict() == {"is_overdue": False, "is_at_risk": False, "completion_percentage": 90}


# ---------- annual documents ----------

def _full_annual_set():
    return [
        DocumentRef(name, expiry_date=date(2025, 1, 31) if name in DOCUMENTS_WITH_EXPIRY else None)
        for name in ANNUAL_DOCUMENT_TYPES
    ]


def test_annual_catalog_has_eighteen_items_two_with_expiry():
    reqs = required_annual_documents()
    assert len(reqs) == 18
    assert len({r.name for r in reqs}) == 18
    assert {r.name for r in reqs if r.needs_expiry} == {WSIB_CERTIFICATE, LIABILITY_INSURANCE}


def test_expiry_items_need_a_date_to_count():
    docs = [DocumentRef(WSIB_CERTIFICATE), DocumentRef(LIABILITY_INSURANCE, expiry_date=date(2024, 12, 31)),
            DocumentRef("Emergency Response Plan"), DocumentRef("Not In Catalog")]
    assert annual_documents_provided(docs) == [
        "Emergency Response Plan",
        LIABILITY_INSURANCE,
    ]


def test_annual_completion_rounds_half_up():
    assert annual_completion_percentage(0) == 0
    assert annual_completion_percentage(1) == 6
    assert annual_completion_percentage(9) == 50
    assert annual_completion_percentage(17) == 94
    assert annual_completion_percentage(18) == 100
    with pytest.raises(InvalidArgument):
        annual_completion_percentage(19)


def test_annual_status_thresholds():
    assert not annual_status(2024, [], datetime(2024, 1, 31, 23, 59)).is_overdue
    assert not annual_status(2024, [], datetime(2024, 2, 1)).is_overdue
    late = annual_status(2024, [], datetime(2024, 2, 1, 0, 0, 1))
    assert late.is_overdue and not late.is_at_risk
    assert annual_status(2024, [], datetime(2024, 2, 8, 0, 0, 1)).is_at_risk


def test_complete_annual_set_is_never_late():
    status = annual_status(2024, _full_annual_set(), datetime(2024, 6, 1))
    assert status.completion_percentage == 100
    assert not status.is_overdue


def test_expired_documents_are_reported_in_order():
    docs = [
        DocumentRef(WSIB_CERTIFICATE, expiry_date=date(2024, 3, 1)),
        DocumentRef(LIABILITY_INSURANCE, expiry_date=date(2024, 6, 1)),
        DocumentRef("Emergency Response Plan"),
    ]
    assert expired_documents(docs, date(2024, 6, 1)) == [WSIB_CERTIFICATE]
    assert expired_documents(docs, datetime(2024, 7, 1, 8, 0)) == [LIABILITY_INSURANCE, WSIB_CERTIFICATE]
