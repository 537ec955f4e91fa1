import io
from decimal import Decimal

import pytest

from app.unieats.db import session_scope
from app.unieats.modules.inventory.models import InventoryItem
from app.unieats.modules.menu.models import MenuItem
from app.unieats.modules.menu.service import validate_menu_item_payload
from app.unieats.modules.orders.models import Order, OrderItem


def _create(client, **overrides):
    payload = {"name": "Falafel Wrap", "price": "35.5", "category": "Lunch", **overrides}
    return client.post("/cafeteria/menu", json=payload)


@pytest.mark.parametrize(
    "payload,expected",
    [
        ({"name": "", "price": "10", "category": "Lunch"}, "Name is required."),
        ({"name": "Tea", "price": "0", "category": "Beverages"}, "Price must be greater than 0."),
        ({"name": "Tea", "price": "abc", "category": "Beverages"}, "Price must be a number."),
        ({"name": "Tea", "price": "0.004", "category": "Beverages"}, "Price must be greater than 0."),
        ({"name": "Tea", "price": "NaN", "category": "Beverages"}, "Price must be a number."),
        ({"name": "Tea", "price": "1e12", "category": "Beverages"}, "Price must be less than"),
        ({"name": "Tea", "price": "5", "category": "Brunch"}, "Invalid category."),
    ],
)
def test_menu_item_validation(payload, expected):
    errors = validate_menu_item_payload(payload)
    assert len(errors) == 1
    assert errors[0].startswith(expected)


def test_create_defaults_preparation_time(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    r = _create(client)
    assert r.status_code == 201, r.json
    item = r.json["item"]
    assert item["price"] == 35.5
    assert item["preparation_time"] == 15
    assert item["is_available"] is True


def test_public_menu_hides_unavailable_items(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    keep = _create(client).json["item"]
    hidden = _create(client, name="Soup", category="Dinner").json["item"]
    r = client.post(f"/cafeteria/menu/{hidden['id']}/toggle")
    assert r.json["item"]["is_available"] is False

    r = client.get(f"/cafeterias/{seed.cafeteria}/menu")
    assert r.status_code == 200
    assert [i["id"] for i in r.json["items"]] == [keep["id"]]

    r = client.get("/cafeteria/menu")
    assert r.json["total"] == 2
    assert r.json["available"] == 1


def test_price_that_rounds_to_zero_is_rejected(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    r = _create(client, price="0.004")
    assert r.status_code == 400
    assert "greater than 0" in r.json["error"]


def test_update_partial(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]
    r = client.post(f"/cafeteria/menu/{item['id']}", json={"price": "-1"})
    assert r.status_code == 400
    r = client.post(f"/cafeteria/menu/{item['id']}", json={"price": "0.001"})
    assert r.status_code == 400
    r = client.post(f"/cafeteria/menu/{item['id']}", json={"price": "40"})
    assert r.status_code == 200
    assert r.json["item"]["price"] == 40.0
    assert r.json["item"]["name"] == "Falafel Wrap"


def test_owner_cannot_touch_other_cafeteria_items(app, client, seed, login):
    from app.unieats.modules.cafeterias.models import Cafeteria

    with session_scope(app) as s:
        other = Cafeteria(name="Other", approval_status="approved", is_active=True)
        s.add(other)
        s.flush()
        foreign = MenuItem(cafeteria_id=other.id, name="Pizza", price=Decimal("60"), category="Dinner")
        s.add(foreign)
        s.flush()
        foreign_id = foreign.id
    login(client, "owner@example.com", "cafeteria_manager")
    assert client.post(f"/cafeteria/menu/{foreign_id}/toggle").status_code == 404


def test_set_ingredients(app, client, seed, login):
    with session_scope(app) as s:
        rice = InventoryItem(cafeteria_id=seed.cafeteria, name="Rice", quantity=Decimal("10"), unit="kg")
        s.add(rice)
        s.flush()
        rice_id = rice.id
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]

    r = client.post(f"/cafeteria/menu/{item['id']}/ingredients", json={"ingredients": [{"inventory_item_id": rice_id}]})
    assert r.status_code == 400
    r = client.post(
        f"/cafeteria/menu/{item['id']}/ingredients",
        json={"ingredients": [{"inventory_item_id": rice_id, "quantity_required": "0.25"}]},
    )
    assert r.status_code == 200
    assert r.json["item"]["ingredients"] == [{"inventory_item_id": rice_id, "name": "Rice", "quantity_required": 0.25}]

    r = client.post(f"/cafeteria/menu/{item['id']}/ingredients", json={"ingredients": []})
    assert r.json["item"]["ingredients"] == []


def test_image_upload_and_delete(app, client, seed, login, tmp_path):
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]
    r = client.post(
        f"/cafeteria/menu/{item['id']}/image",
        data={"file": (io.BytesIO(b"GIF89a"), "wrap.gif", "image/gif")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["item"]["has_image"] is True
    assert list((tmp_path / "storage" / "menu-items").rglob("wrap.gif"))

    assert client.post(f"/cafeteria/menu/{item['id']}/delete").status_code == 200
    assert not list((tmp_path / "storage" / "menu-items").rglob("wrap.gif"))


def test_replacing_image_removes_previous_file(client, seed, login, tmp_path):
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]
    url = f"/cafeteria/menu/{item['id']}/image"
    for name in ("first.png", "second.png"):
        r = client.post(
            url,
            data={"file": (io.BytesIO(b"\x89PNG"), name, "image/png")},
            content_type="multipart/form-data",
        )
        assert r.status_code == 200
    root = tmp_path / "storage" / "menu-items"
    assert not list(root.rglob("first.png"))
    assert list(root.rglob("second.png"))


def _completed_order(app, seed, menu_item_id):
    with session_scope(app) as s:
        order = Order(
            order_number="ORD-20240101-RATE01",
            user_id=seed.student,
            cafeteria_id=seed.cafeteria,
            status="completed",
            total_amount=Decimal("35.50"),
        )
        order.items.append(OrderItem(menu_item_id=menu_item_id, quantity=1, price=Decimal("35.50")))
        s.add(order)
        s.flush()
        return order.id


def test_rating_requires_completed_order(app, client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]
    client.post("/auth/logout")

    login(client, "student@example.com", "student")
    r = client.post(f"/menu-items/{item['id']}/ratings", json={"rating": 5})
    assert r.status_code == 400

    order_id = _completed_order(app, seed, item["id"])
    r = client.post(f"/menu-items/{item['id']}/ratings", json={"rating": 6, "order_id": order_id})
    assert r.status_code == 400
    r = client.post(f"/menu-items/{item['id']}/ratings", json={"rating": 4, "order_id": order_id, "comment": "Tasty"})
    assert r.status_code == 201
    assert r.json["average_rating"] == 4.0
    assert r.json["rating_count"] == 1

    r = client.post(f"/menu-items/{item['id']}/ratings", json={"rating": 5, "order_id": order_id})
    assert r.status_code == 400
    assert "already rated" in r.json["error"]


def test_manager_cannot_rate(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    item = _create(client).json["item"]
    r = client.post(f"/menu-items/{item['id']}/ratings", json={"rating": 5})
    assert r.status_code == 403
