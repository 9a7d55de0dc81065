import os
from io import BytesIO
from types import SimpleNamespace

import pytest

from compliance_api import create_app
from compliance_api.extensions import db
from compliance_api.models.project import Project
from compliance_api.models.user import User

PASSWORD = "Passw0rd!"


@pytest.fixture(scope="function")
def app(tmp_path):
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["UPLOAD_STORAGE_ROOT"] = str(tmp_path / "uploads")
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


def _user(email, role, full_name=None, company_name=None):
    u = User(email=email, role=role, full_name=full_name, company_name=company_name, status="active")
    u.set_password(PASSWORD)
    db.session.add(u)
    return u


@pytest.fixture(scope="function")
def people(app):
    """Admin, two advisors and three subcontractors; two projects."""
    with app.app_context():
        admin = _user("admin@demo.com", "admin", full_name="Demo Admin")
        advisor = _user("alice@advisor.com", "advisor", full_name="Alice Johnson")
        other_advisor = _user("bob@advisor.com", "advisor", full_name="Bob Smith")
        sub = _user("apex@construction.com", "subcontractor", "John Miller", "Apex Construction")
        other_sub = _user("stark@electrical.com", "subcontractor", "Tony Stark", "Stark Electrical")
        outsider = _user("wayne@plumbing.com", "subcontractor", "Bruce Wayne", "Wayne Plumbing")
        db.session.flush()

        tower = Project(name="Downtown Tower", description="45-story tower", assigned_advisor_id=advisor.id)
        tower.subcontractors = [sub, other_sub]
        highway = Project(name="Highway Expansion", assigned_advisor_id=other_advisor.id)
        highway.subcontractors = [outsider]
        db.session.add_all([tower, highway])
        db.session.commit()

        return SimpleNamespace(
            admin=admin.id,
            advisor=advisor.id,
            other_advisor=other_advisor.id,
            sub=sub.id,
            other_sub=other_sub.id,
            outsider=outsider.id,
            tower=tower.id,
            highway=highway.id,
            emails={
                "admin": admin.email,
                "advisor": advisor.email,
                "other_advisor": other_advisor.email,
                "sub": sub.email,
                "other_sub": other_sub.email,
                "outsider": outsider.email,
            },
        )


@pytest.fixture(scope="function")
def login(client):
    def _login(email, password=PASSWORD):
        rv = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert rv.status_code == 200, rv.get_json()
        return {"Authorization": f"Bearer {rv.get_json()['data']['access']}"}
    return _login


@pytest.fixture(scope="function")
def headers(people, login):
    """Auth headers per role name used in ``people.emails``."""
    return {role: login(email) for role, email in people.emails.items()}


@pytest.fixture
def upload():
    def _upload(name="report.pdf", body=b"%PDF-1.4 safety report"):
        return (BytesIO(body), name)
    return _upload
