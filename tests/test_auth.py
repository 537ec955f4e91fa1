from app.unieats.db import session_scope
from app.unieats.models import User

from conftest import PASSWORD


def test_login_returns_redirect_and_csrf(client):
    r = client.post("/auth/login", json={"email": "owner@example.com", "password": PASSWORD, "role": "cafeteria"})
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["redirect"] == "/cafeteria/dashboard"
    assert r.json["csrf_token"]


def test_login_form_post_accepted(client):
    r = client.post("/auth/login", data={"email": "student@example.com", "password": PASSWORD, "role": "student"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "student"


def test_invalid_credentials(client):
    r = client.post("/auth/login", json={"email": "student@example.com", "password": "nope", "role": "student"})
    assert r.status_code == 401
    assert r.json["success"] is False


def test_role_mismatch_rejected(client):
    r = client.post("/auth/login", json={"email": "student@example.com", "password": PASSWORD, "role": "admin"})
    assert r.status_code == 403
    assert r.json["message"] == "Invalid role. Expected: admin, but user has: student"


def test_suspended_user_cannot_sign_in(app, client, seed):
    with session_scope(app) as s:
        u = s.get(User, seed.student)
        u.is_suspended = True
        u.suspension_reason = "abuse"
    r = client.post("/auth/login", json={"email": "student@example.com", "password": PASSWORD, "role": "student"})
    assert r.status_code == 403
    assert r.json["suspended"] is True


def test_suspension_signs_out_live_session(app, client, seed, login):
    login(client, "student@example.com", "student")
    assert client.get("/auth/me").status_code == 200
    with session_scope(app) as s:
        s.get(User, seed.student).is_suspended = True
    assert client.get("/auth/me").status_code == 401


def test_pending_manager_gets_pending_flag(app, client, seed):
    with session_scope(app) as s:
        s.get(User, seed.owner).is_active = False
    r = client.post("/auth/login", json={"email": "owner@example.com", "password": PASSWORD, "role": "cafeteria_manager"})
    assert r.status_code == 403
    assert r.json["pending"] is True
    assert "pending approval" in r.json["message"]


def test_rate_limit_after_five_attempts(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": "student@example.com", "password": "bad", "role": "student"})
    r = client.post("/auth/login", json={"email": "student@example.com", "password": PASSWORD, "role": "student"})
    assert r.status_code == 429


def test_register_creates_student(client):
    r = client.post(
        "/auth/register",
        json={"email": "New@Example.com", "password": "longenough", "full_name": "New Person", "role": "admin"},
    )
    assert r.status_code == 201
    assert r.json["user"]["email"] == "new@example.com"
    assert r.json["user"]["role"] == "student"

    r = client.post("/auth/register", json={"email": "new@example.com", "password": "longenough", "full_name": "Again"})
    assert r.status_code == 409


def test_register_validation(client):
    r = client.post("/auth/register", json={"email": "bad", "password": "short"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_password_change_requires_csrf_and_current_password(client, login):
    login(client, "student@example.com", "student")
    r = client.post("/auth/password", json={"current_password": "wrong", "new_password": "anotherpass"})
    assert r.status_code == 400
    r = client.post("/auth/password", json={"current_password": PASSWORD, "new_password": "anotherpass"})
    assert r.status_code == 200

    client.post("/auth/logout")
    r = client.post("/auth/login", json={"email": "student@example.com", "password": "anotherpass", "role": "student"})
    assert r.status_code == 200


def test_logout_clears_session(client, login):
    login(client, "student@example.com", "student")
    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_profile_update_changes_name_and_phone(client, login):
    login(client, "student@example.com", "student")
    r = client.post("/auth/profile", json={"full_name": "  Samira Student ", "phone": "0123"})
    assert r.status_code == 200
    assert r.json["user"]["full_name"] == "Samira Student"
    assert r.json["user"]["phone"] == "0123"
    assert r.json["user"]["email"] == "student@example.com"

    r = client.post("/auth/profile", json={"full_name": "   "})
    assert r.status_code == 400
    assert client.get("/auth/me").json["user"]["full_name"] == "Samira Student"

    client.post("/auth/logout")
    login(client, "admin@example.com", "admin")
    events = client.get("/admin/audit?action=user.profile_update").json["events"]
    assert len(events) == 1
    assert events[0]["actor_email"] == "student@example.com"
    assert events[0]["metadata"]["changes"]["full_name"]["new"] == "Samira Student"


def test_profile_update_ignores_email_and_role(client, login):
    login(client, "student@example.com", "student")
    r = client.post("/auth/profile", json={"email": "other@example.com", "role": "admin", "phone": "555"})
    assert r.status_code == 200
    assert r.json["user"]["email"] == "student@example.com"
    assert r.json["user"]["role"] == "student"


def test_profile_update_requires_login(client):
    client.environ_base["HTTP_X_CSRF_TOKEN"] = client.get("/auth/csrf").json["csrf_token"]
    assert client.post("/auth/profile", json={"full_name": "Nobody"}).status_code == 401
