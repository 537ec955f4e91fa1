import pytest

from app.unieats.db import session_scope
from app.unieats.modules.notifications.service import notify


def test_notify_rejects_unknown_type(app, seed):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            notify(s, seed.student, type="spam", title="x", message="y")


def test_inbox_and_mark_read(app, client, seed, login):
    with session_scope(app) as s:
        notify(s, seed.student, type="promotion", title="Half price", message="Today only", data={"code": "HALF"})
        notify(s, seed.student, type="reminder", title="Pickup", message="Your order is waiting")
        notify(s, seed.owner, type="system", title="Not yours", message="-")

    login(client, "student@example.com", "student")
    r = client.get("/notifications")
    assert r.status_code == 200
    assert r.json["unread_count"] == 2
    titles = {n["title"]: n for n in r.json["notifications"]}
    assert set(titles) == {"Half price", "Pickup"}
    assert titles["Half price"]["data"] == {"code": "HALF"}

    nid = titles["Pickup"]["id"]
    r = client.post(f"/notifications/{nid}/read")
    assert r.json["notification"]["is_read"] is True
    assert client.get("/notifications/unread-count").json["unread_count"] == 1
    assert len(client.get("/notifications?unread=1").json["notifications"]) == 1

    r = client.post("/notifications/read-all")
    assert r.json["updated"] == 1
    assert client.get("/notifications/unread-count").json["unread_count"] == 0


def test_cannot_read_someone_elses_notification(app, client, seed, login):
    with session_scope(app) as s:
        n = notify(s, seed.owner, type="system", title="Owner only", message="-")
        s.flush()
        nid = n.id
    login(client, "student@example.com", "student")
    assert client.post(f"/notifications/{nid}/read").status_code == 404


def test_admin_broadcast_by_role(client, seed, login):
    login(client, "admin@example.com", "admin")
    r = client.post(
        "/admin/notifications/send",
        json={"title": "Exam week", "message": "Extended hours", "role": "student", "type": "system"},
    )
    assert r.status_code == 200
    assert r.json["recipients"] == 1

    r = client.post("/admin/notifications/send", json={"title": "Hi", "message": "there"})
    assert r.status_code == 400

    r = client.post("/admin/notifications/send", json={"title": "Hi", "message": "there", "user_id": seed.owner})
    assert r.json["recipients"] == 1
