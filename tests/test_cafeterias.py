import io

from app.unieats.db import session_scope
from app.unieats.models import User
from app.unieats.modules.cafeterias.models import Cafeteria
from app.unieats.modules.cafeterias.service import is_open_now

from conftest import PASSWORD

APPLICATION = {
    "business_name": "Noodle Bar",
    "owner_name": "Nadia Noodle",
    "email": "nadia@example.com",
    "password": PASSWORD,
    "phone": "0100",
    "location": "Engineering block",
}


def _anonymous_csrf(client):
    token = client.get("/auth/csrf").json["csrf_token"]
    client.environ_base["HTTP_X_CSRF_TOKEN"] = token


def _apply(client, **overrides):
    _anonymous_csrf(client)
    return client.post("/cafeteria-applications", json={**APPLICATION, **overrides})


def test_application_approval_lets_owner_sign_in(app, client, login):
    r = _apply(client)
    assert r.status_code == 201
    app_id = r.json["application"]["id"]

    r = client.post(
        "/auth/login", json={"email": "nadia@example.com", "password": PASSWORD, "role": "cafeteria_manager"}
    )
    assert r.status_code == 403
    assert r.json["pending"] is True

    login(client, "admin@example.com", "admin")
    r = client.get("/admin/cafeteria-applications?status=pending")
    assert [a["id"] for a in r.json["applications"]] == [app_id]
    r = client.post(f"/admin/cafeteria-applications/{app_id}/review", json={"status": "approved"})
    assert r.status_code == 200
    cafeteria_id = r.json["application"]["cafeteria_id"]
    assert cafeteria_id
    client.post("/auth/logout")

    login(client, "nadia@example.com", "cafeteria_manager")
    r = client.get("/cafeteria/profile")
    assert r.status_code == 200
    assert r.json["cafeteria"]["id"] == cafeteria_id
    assert r.json["cafeteria"]["name"] == "Noodle Bar"


def test_duplicate_application_conflict(client):
    assert _apply(client).status_code == 201
    r = _apply(client, business_name="Another")
    assert r.status_code == 409
    assert "Noodle Bar" in r.json["error"]


def test_application_validation(client):
    r = _apply(client, business_name="", email="nope")
    assert r.status_code == 400
    assert len(r.json["errors"]) == 2


def test_rejected_applicant_stays_inactive(app, client, login):
    app_id = _apply(client).json["application"]["id"]
    login(client, "admin@example.com", "admin")
    r = client.post(
        f"/admin/cafeteria-applications/{app_id}/review", json={"status": "rejected", "review_notes": "Incomplete"}
    )
    assert r.status_code == 200
    assert r.json["application"]["review_notes"] == "Incomplete"
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "nadia@example.com").one()
        assert u.is_active is False


def test_rejected_applicant_can_apply_again(app, client, login):
    app_id = _apply(client).json["application"]["id"]
    login(client, "admin@example.com", "admin")
    client.post(f"/admin/cafeteria-applications/{app_id}/review", json={"status": "rejected"})
    client.post("/auth/logout")

    r = _apply(client, business_name="Noodle Bar 2", owner_name="Nadia N.", password="newpassword1")
    assert r.status_code == 201, r.json
    assert r.json["application"]["status"] == "pending"
    assert r.json["application"]["id"] != app_id
    with session_scope(app) as s:
        users = s.query(User).filter(User.email == "nadia@example.com").all()
        assert len(users) == 1
        assert users[0].full_name == "Nadia N."
        assert users[0].is_active is False

    assert _apply(client).status_code == 409


def test_application_with_existing_student_email_conflicts(client, seed):
    r = _apply(client, email="student@example.com")
    assert r.status_code == 409
    assert "account" in r.json["error"]


def test_revoke_deactivates_owner(app, client, seed, login):
    login(client, "admin@example.com", "admin")
    r = client.post(f"/admin/cafeterias/{seed.cafeteria}/revoke", json={})
    assert r.status_code == 400
    r = client.post(f"/admin/cafeterias/{seed.cafeteria}/revoke", json={"reason": "Health code violation"})
    assert r.status_code == 200
    assert r.json["cafeteria"]["approval_status"] == "revoked"

    assert client.get("/cafeterias").json["cafeterias"] == []
    with session_scope(app) as s:
        assert s.get(User, seed.owner).is_active is False


def test_admin_cafeteria_list_has_stats(client, seed, login):
    login(client, "admin@example.com", "admin")
    r = client.get("/admin/cafeterias")
    assert r.status_code == 200
    row = r.json["cafeterias"][0]
    assert row["owner_email"] == "owner@example.com"
    assert row["order_count"] == 0
    assert row["average_rating"] == 0.0


def test_owner_profile_and_hours(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    r = client.post("/cafeteria/profile", json={"opening_time": "08:00"})
    assert r.status_code == 400
    r = client.post("/cafeteria/profile", json={"opening_time": "08:00", "closing_time": "17:30", "location": "Block C"})
    assert r.status_code == 200
    assert r.json["cafeteria"]["closing_time"] == "17:30"
    assert r.json["cafeteria"]["location"] == "Block C"


def test_owner_status_validation(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    r = client.post("/cafeteria/status", json={"status": "on_fire"})
    assert r.status_code == 400
    r = client.post("/cafeteria/status", json={"status": "busy", "message": "Long queue"})
    assert r.status_code == 200
    assert r.json["cafeteria"]["status_message"] == "Long queue"


def test_owner_image_upload(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    r = client.post(
        "/cafeteria/profile/image",
        data={"file": (io.BytesIO(b"not really a pdf"), "menu.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    r = client.post(
        "/cafeteria/profile/image",
        data={"file": (io.BytesIO(b"\x89PNG fake"), "front.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["cafeteria"]["has_image"] is True


def test_owner_image_replacement_removes_old_file(client, seed, login, tmp_path):
    login(client, "owner@example.com", "cafeteria_manager")
    for name in ("front.png", "inside.png"):
        r = client.post(
            "/cafeteria/profile/image",
            data={"file": (io.BytesIO(b"\x89PNG"), name, "image/png")},
            content_type="multipart/form-data",
        )
        assert r.status_code == 200
    root = tmp_path / "storage" / "cafeterias"
    assert not list(root.rglob("front.png"))
    assert list(root.rglob("inside.png"))


def test_is_open_now_handles_overnight_hours():
    from datetime import datetime, time

    c = Cafeteria(name="Late", operational_status="open", opening_time=time(20, 0), closing_time=time(2, 0))
    assert is_open_now(c, datetime(2024, 1, 1, 23, 0))
    assert is_open_now(c, datetime(2024, 1, 2, 1, 0))
    assert not is_open_now(c, datetime(2024, 1, 2, 12, 0))
    c.operational_status = "closed"
    assert not is_open_now(c, datetime(2024, 1, 1, 23, 0))
