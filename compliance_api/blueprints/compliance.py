# compliance_api/blueprints/compliance.py
from flask import Blueprint

from compliance_api.common.auth import requires_roles
from compliance_api.common.clock import request_now
from compliance_api.common.http import ok
from compliance_api.services import compliance_rules as rules

bp = Blueprint("compliance", __name__, url_prefix="/api/v1/compliance")


@bp.get("/catalog")
@requires_roles()
def catalog():
    """Static reference data the forms are built from."""
    return ok({
        "metrics": {
            "incident": list(rules.INCIDENT_METRICS),
            "activity": list(rules.ACTIVITY_METRICS),
        },
        "monthly_documents": list(rules.MONTHLY_DOCUMENT_TYPES),
        "conditional_monthly_document": rules.INCIDENT_REPORT,
        "annual_documents": [r.as_dict() for r in rules.required_annual_documents()],
    })


@bp.get("/periods")
@requires_roles()
def periods():
    now = request_now()
    return ok({
        "as_of": now.isoformat(),
        "eligible_periods": [
            {
                **p.as_dict(),
                "overdue_after": rules.overdue_threshold(p, now.tzinfo).isoformat(),
                "at_risk_after": rules.at_risk_threshold(p, now.tzinfo).isoformat(),
            }
            for p in rules.eligible_periods(now)
        ],
        "annual_documents_due": rules.are_annual_documents_due(now),
    })
