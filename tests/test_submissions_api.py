import os

from compliance_api.extensions import db
from compliance_api.models.project import Project
from compliance_api.services.compliance_rules import INCIDENT_REPORT, METRIC_FIELDS, MONTHLY_DOCUMENT_TYPES

AS_OF = "2024-04-03T10:00:00"

FULL_METRICS = {name: 0 for name in METRIC_FIELDS}
FULL_METRICS.update({"total_worker_hours": 1200, "toolbox_talks": 4, "safety_inspections": 2})


def _blobs(app):
    root = app.config["UPLOAD_STORAGE_ROOT"]
    return sorted(name for _, _, files in os.walk(root) for name in files)


def _draft(client, headers, project_id, metrics, month=3, year=2024, as_of=AS_OF):
    return client.put(
        f"/api/v1/submissions?as_of={as_of}",
        json={"project_id": project_id, "month": month, "year": year, "metrics": metrics},
        headers=headers,
    )


def _upload_doc(client, headers, submission_id, doc_type, file, as_of=AS_OF):
    return client.post(
        f"/api/v1/submissions/{submission_id}/documents?as_of={as_of}",
        data={"doc_type": doc_type, "file": file},
        headers=headers,
        content_type="multipart/form-data",
    )


def test_draft_is_created_then_merged(client, people, headers):
    rv = _draft(client, headers["sub"], people.tower, {"lost_time_injuries": 0, "near_misses": 0})
    assert rv.status_code == 201, rv.get_json()
    first = rv.get_json()["data"]
    assert first["status"] == "Not Submitted"
    assert first["state"] == "pending"
    assert first["compliance"]["completion_percentage"] == 9
    assert first["project_name"] == "Downtown Tower"
    assert first["subcontractor_name"] == "Apex Construction"

    rv = _draft(client, headers["sub"], people.tower, {"toolbox_talks": 4})
    assert rv.status_code == 200
    second = rv.get_json()["data"]
    assert second["id"] == first["id"]
    assert second["metrics"]["near_misses"] == 0
    assert second["metrics"]["toolbox_talks"] == 4
    assert second["metrics"]["total_worker_hours"] is None


def test_draft_only_for_open_periods(client, people, headers):
    rv = _draft(client, headers["sub"], people.tower, {}, month=1)
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "PERIOD_CLOSED"

    rv = _draft(client, headers["sub"], people.tower, {}, month=5)
    assert rv.status_code == 422

    rv = _draft(client, headers["sub"], people.tower, {}, month=13)
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "INVALID_ARGUMENT"


def test_december_is_open_in_january(client, people, headers):
    rv = _draft(client, headers["sub"], people.tower, {}, month=12, year=2024, as_of="2025-01-05T08:00:00")
    assert rv.status_code == 201


def test_draft_rejects_bad_metrics(client, people, headers):
    rv = _draft(client, headers["sub"], people.tower, {"near_misses": -1})
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "INVALID_ARGUMENT"

    rv = _draft(client, headers["sub"], people.tower, {"paper_cuts": 2})
    assert rv.status_code == 422


def test_only_project_subcontractors_write(client, people, headers):
    assert _draft(client, headers["outsider"], people.tower, {}).status_code == 404
    assert _draft(client, headers["advisor"], people.tower, {}).status_code == 403
    assert _draft(client, headers["admin"], people.tower, {}).status_code == 403


def test_inactive_project_rejects_drafts(app, client, people, headers):
    with app.app_context():
        db.session.get(Project, people.tower).is_active = False
        db.session.commit()
    rv = _draft(client, headers["sub"], people.tower, {})
    assert rv.status_code == 409
    assert rv.get_json()["error"]["code"] == "PROJECT_INACTIVE"


def test_submit_needs_every_metric(client, people, headers):
    sid = _draft(client, headers["sub"], people.tower, {"near_misses": 0, "toolbox_talks": 1}).get_json()["data"]["id"]
    rv = client.post(f"/api/v1/submissions/{sid}/submit?as_of={AS_OF}", headers=headers["sub"])
    assert rv.status_code == 422
    err = rv.get_json()["error"]
    assert err["code"] == "METRICS_INCOMPLETE"
    assert len(err["detail"]["missing"]) == 9


def test_submit_after_window_closes(client, people, headers):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    rv = client.post(f"/api/v1/submissions/{sid}/submit?as_of=2024-05-02T09:00:00", headers=headers["sub"])
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "PERIOD_CLOSED"


def test_draft_upload_submit_then_locked(client, people, headers, upload):
    metrics = dict(FULL_METRICS, near_misses=1)
    rv = _draft(client, headers["sub"], people.tower, metrics)
    sid = rv.get_json()["data"]["id"]
    required = [d["doc_type"] for d in rv.get_json()["data"]["required_documents"]]
    assert required == list(MONTHLY_DOCUMENT_TYPES) + [INCIDENT_REPORT]

    rv = _upload_doc(client, headers["sub"], sid, INCIDENT_REPORT, upload("investigation.pdf"))
    assert rv.status_code == 201, rv.get_json()

    rv = _upload_doc(client, headers["sub"], sid, "Fit for Duty Policy", upload())
    assert rv.status_code == 422
    assert INCIDENT_REPORT in rv.get_json()["error"]["detail"]["allowed"]

    rv = _upload_doc(client, headers["sub"], sid, MONTHLY_DOCUMENT_TYPES[0], upload("virus.exe"))
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "FILE_REJECTED"

    rv = client.post(f"/api/v1/submissions/{sid}/submit?as_of={AS_OF}", headers=headers["sub"])
    assert rv.status_code == 200
    data = rv.get_json()["data"]
    assert data["status"] == "Submitted"
    assert data["state"] == "submitted"
    assert data["submitted_at"] == AS_OF
    # 50 for metrics + 1/5 of 50 for documents
    assert data["compliance"]["completion_percentage"] == 60

    rv = _draft(client, headers["sub"], people.tower, {"near_misses": 0})
    assert rv.status_code == 409
    assert rv.get_json()["error"]["code"] == "SUBMISSION_LOCKED"

    rv = client.post(f"/api/v1/submissions/{sid}/submit?as_of={AS_OF}", headers=headers["sub"])
    assert rv.status_code == 409

    # missing documents can still be attached, existing ones are final
    rv = _upload_doc(client, headers["sub"], sid, MONTHLY_DOCUMENT_TYPES[1], upload("inspection.pdf"))
    assert rv.status_code == 201
    assert rv.get_json()["data"]["compliance"]["completion_percentage"] == 70

    rv = _upload_doc(client, headers["sub"], sid, INCIDENT_REPORT, upload("again.pdf"))
    assert rv.status_code == 409
    assert rv.get_json()["error"]["code"] == "DOCUMENT_EXISTS"

    # a filed submission is never late
    rv = client.get(f"/api/v1/submissions/{sid}?as_of=2024-06-01T00:00:00", headers=headers["advisor"])
    assert rv.get_json()["data"]["compliance"]["is_overdue"] is False
    assert rv.get_json()["data"]["days_overdue"] == 0


def test_draft_document_can_be_replaced(client, people, headers, upload):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    doc_type = MONTHLY_DOCUMENT_TYPES[2]
    assert _upload_doc(client, headers["sub"], sid, doc_type, upload("v1.pdf")).status_code == 201
    rv = _upload_doc(client, headers["sub"], sid, doc_type, upload("v2.pdf"))
    assert rv.status_code == 201
    docs = rv.get_json()["data"]["documents"]
    assert len(docs) == 1
    assert docs[0]["original_file_name"] == "v2.pdf"


def test_incident_report_not_accepted_without_incidents(client, people, headers, upload):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    rv = _upload_doc(client, headers["sub"], sid, INCIDENT_REPORT, upload())
    assert rv.status_code == 422


def test_state_follows_as_of(client, people, headers):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]

    def state(as_of):
        rv = client.get(f"/api/v1/submissions/{sid}?as_of={as_of}", headers=headers["sub"])
        return rv.get_json()["data"]

    assert state("2024-04-07T00:00:00")["state"] == "pending"
    late = state("2024-04-10T00:00:00")
    assert late["state"] == "overdue"
    assert late["days_overdue"] == 3
    assert state("2024-04-20T00:00:00")["state"] == "at_risk"


def test_invalid_as_of(client, people, headers):
    rv = client.get("/api/v1/submissions?as_of=yesterday", headers=headers["sub"])
    assert rv.status_code == 422
    assert rv.get_json()["error"]["code"] == "INVALID_AS_OF"


def test_listing_is_role_scoped(client, people, headers):
    _draft(client, headers["sub"], people.tower, {"near_misses": 0})
    _draft(client, headers["other_sub"], people.tower, {"near_misses": 1})

    def total(who, query=""):
        rv = client.get(f"/api/v1/submissions?as_of={AS_OF}{query}", headers=headers[who])
        assert rv.status_code == 200
        return rv.get_json()["meta"]["total"]

    assert total("admin") == 2
    assert total("advisor") == 2
    assert total("other_advisor") == 0
    assert total("sub") == 1
    assert total("outsider") == 0
    assert total("admin", "&status=Submitted") == 0
    assert total("admin", f"&subcontractor_id={people.other_sub}") == 1

    rv = client.get("/api/v1/submissions?status=Done", headers=headers["admin"])
    assert rv.status_code == 422


def test_other_subcontractor_cannot_read_or_submit(client, people, headers):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    assert client.get(f"/api/v1/submissions/{sid}", headers=headers["other_sub"]).status_code == 404
    assert client.get(f"/api/v1/submissions/{sid}", headers=headers["other_advisor"]).status_code == 404
    rv = client.post(f"/api/v1/submissions/{sid}/submit?as_of={AS_OF}", headers=headers["other_sub"])
    assert rv.status_code == 404


def test_uploaded_file_download_permissions(client, people, headers, upload):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    rv = _upload_doc(client, headers["sub"], sid, MONTHLY_DOCUMENT_TYPES[0], upload("flra.pdf", b"%PDF flra"))
    url = rv.get_json()["data"]["documents"][0]["download_url"]

    rv = client.get(url, headers=headers["sub"])
    assert rv.status_code == 200
    assert rv.data == b"%PDF flra"
    rv.close()

    for who, expected in (("advisor", 200), ("admin", 200), ("other_sub", 404), ("other_advisor", 404)):
        rv = client.get(url, headers=headers[who])
        assert rv.status_code == expected, who
        rv.close()

    assert client.get("/api/v1/files/submissions/1/1/03_2024/missing.pdf", headers=headers["admin"]).status_code == 404


def test_dot_segments_do_not_reach_another_subcontractors_file(client, people, headers, upload):
    sid = _draft(client, headers["other_sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    rv = _upload_doc(client, headers["other_sub"], sid, MONTHLY_DOCUMENT_TYPES[0], upload("secret.pdf", b"%PDF secret"))
    key = rv.get_json()["data"]["documents"][0]["storage_path"]
    leaf = key.rsplit("/", 1)[1]

    assert client.get(f"/api/v1/files/{key}", headers=headers["sub"]).status_code == 404
    for crafted in (
        f"submissions/{people.tower}/{people.sub}/x/../../{people.other_sub}/03_2024/{leaf}",
        f"submissions/{people.tower}/{people.other_sub}/./03_2024/{leaf}",
    ):
        for who in ("sub", "admin"):
            rv = client.get(f"/api/v1/files/{crafted}", headers=headers[who])
            assert rv.status_code == 404, (who, crafted)
            assert b"secret" not in rv.data
            rv.close()


def test_failed_replacement_keeps_the_original(app, client, people, headers, upload, monkeypatch):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    doc_type = MONTHLY_DOCUMENT_TYPES[1]
    rv = _upload_doc(client, headers["sub"], sid, doc_type, upload("v1.pdf", b"%PDF v1"))
    assert rv.status_code == 201
    blobs = _blobs(app)
    assert len(blobs) == 1

    def broken_commit():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(db.session, "commit", broken_commit)
    rv = _upload_doc(client, headers["sub"], sid, doc_type, upload("v2.pdf", b"%PDF v2"))
    assert rv.status_code == 500
    monkeypatch.undo()

    # neither the row nor the blob moved; the v2 blob was cleaned up
    assert _blobs(app) == blobs
    docs = client.get(f"/api/v1/submissions/{sid}", headers=headers["sub"]).get_json()["data"]["documents"]
    assert [d["original_file_name"] for d in docs] == ["v1.pdf"]
    rv = client.get(docs[0]["download_url"], headers=headers["sub"])
    assert rv.status_code == 200
    assert rv.data == b"%PDF v1"
    rv.close()


def test_replacement_removes_the_old_blob(app, client, people, headers, upload):
    sid = _draft(client, headers["sub"], people.tower, FULL_METRICS).get_json()["data"]["id"]
    doc_type = MONTHLY_DOCUMENT_TYPES[1]
    _upload_doc(client, headers["sub"], sid, doc_type, upload("v1.pdf"))
    rv = _upload_doc(client, headers["sub"], sid, doc_type, upload("v2.pdf"))
    key = rv.get_json()["data"]["documents"][0]["storage_path"]
    assert _blobs(app) == [key.rsplit("/", 1)[1]]
