from types import SimpleNamespace

import pytest

from app.unieats import create_app
from app.unieats.auth import reset_rate_limits
from app.unieats.db import session_scope
from app.unieats.models import ROLE_ADMIN, ROLE_CAFETERIA_MANAGER, ROLE_STUDENT, Base
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.rbac import sync_roles_and_permissions
from app.unieats.users import create_user

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["LOCAL_STORAGE_ROOT"] = str(tmp_path / "storage")
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    reset_rate_limits()
    return app


@pytest.fixture()
def seed(app):
    """Admin, student, and a manager who owns one approved, open cafeteria."""
    with session_scope(app) as s:
        sync_roles_and_permissions(s)
        admin = create_user(s, email="admin@example.com", password=PASSWORD, role=ROLE_ADMIN, full_name="Ada Admin")
        student = create_user(s, email="student@example.com", password=PASSWORD, role=ROLE_STUDENT, full_name="Sam Student")
        owner = create_user(
            s, email="owner@example.com", password=PASSWORD, role=ROLE_CAFETERIA_MANAGER, full_name="Olu Owner"
        )
        cafeteria = Cafeteria(name="Main Hall", owner_user_id=owner.id, approval_status="approved", is_active=True)
        s.add(cafeteria)
        s.flush()
        ids = SimpleNamespace(admin=admin.id, student=student.id, owner=owner.id, cafeteria=cafeteria.id)
    return ids


@pytest.fixture()
def client(app, seed):
    return app.test_client()


@pytest.fixture()
def login():
    """Sign a test client in and make it send the session's CSRF token on every request."""

    def _login(client, email, role, password=PASSWORD):
        r = client.post("/auth/login", json={"email": email, "password": password, "role": role})
        assert r.status_code == 200, r.json
        client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]
        return r

    return _login
