def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_index_reports_platform_settings(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json["name"] == "UniEats"
    assert r.json["currency"] == "EGP"
    assert r.json["maintenance_mode"] is False


def test_login_and_admin_access(client, login):
    # Anonymous gets 401, not a redirect
    r = client.get("/admin/users")
    assert r.status_code == 401

    login(client, "admin@example.com", "admin")
    r = client.get("/admin/users")
    assert r.status_code == 200
    assert r.json["counts"]["total"] == 3


def test_student_cannot_reach_admin(client, login):
    login(client, "student@example.com", "student")
    r = client.get("/admin/users")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "users.view"


def test_post_without_csrf_rejected(client, login):
    login(client, "student@example.com", "student")
    client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/support-tickets", json={"title": "t", "description": "d"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_missing_tables_return_503(tmp_path, monkeypatch):
    from app.unieats import create_app

    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'empty.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app()
    r = app.test_client().get("/")
    assert r.status_code == 503
    assert "users" in r.json["missing"]
