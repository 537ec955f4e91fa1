"""Order placement, the status machine and inventory deduction."""
from decimal import Decimal

import pytest

from app.unieats.db import session_scope
from app.unieats.modules.inventory.models import InventoryItem
from app.unieats.modules.menu.models import MenuItem, MenuItemIngredient
from app.unieats.modules.notifications.models import Notification
from app.unieats.modules.orders.models import Order, OrderItem
from app.unieats.modules.platform_settings.models import PlatformSetting


@pytest.fixture()
def menu(app, seed):
    """Two menu items; the burger uses 0.2 kg of beef per serving."""
    with session_scope(app) as s:
        beef = InventoryItem(
            cafeteria_id=seed.cafeteria,
            name="Beef",
            category="meat",
            quantity=Decimal("1.000"),
            unit="kg",
            min_quantity=Decimal("0.500"),
        )
        s.add(beef)
        s.flush()
        burger = MenuItem(cafeteria_id=seed.cafeteria, name="Burger", price=Decimal("50.00"), category="Lunch")
        burger.ingredients.append(MenuItemIngredient(inventory_item_id=beef.id, quantity_required=Decimal("0.200")))
        tea = MenuItem(cafeteria_id=seed.cafeteria, name="Tea", price=Decimal("10.00"), category="Beverages")
        s.add_all([burger, tea])
        s.flush()
        return {"beef": beef.id, "burger": burger.id, "tea": tea.id}


def _place(client, seed, menu, qty=2):
    r = client.post(
        "/orders",
        json={
            "cafeteria_id": seed.cafeteria,
            "items": [{"menu_item_id": menu["burger"], "quantity": qty}, {"menu_item_id": menu["tea"], "quantity": 1}],
            "payment_method": "cash",
        },
    )
    assert r.status_code == 201, r.json
    return r.json["order"]


def test_place_order_computes_split(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    assert order["status"] == "pending"
    assert order["order_number"].startswith("ORD-")
    assert order["subtotal"] == 110.0
    assert order["user_service_fee"] == 4.4
    assert order["cafeteria_commission"] == 11.0
    assert order["admin_revenue"] == 15.4
    assert order["total_amount"] == 114.4


def test_place_order_notifies_owner(app, client, seed, menu, login):
    login(client, "student@example.com", "student")
    _place(client, seed, menu)
    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == seed.owner).one()
        assert n.type == "order"
        assert n.priority == "high"


def test_item_from_other_cafeteria_rejected(client, seed, menu, login):
    login(client, "student@example.com", "student")
    r = client.post("/orders", json={"cafeteria_id": seed.cafeteria, "items": [{"menu_item_id": 9999, "quantity": 1}]})
    assert r.status_code == 400
    assert "not on this cafeteria's menu" in r.json["error"]


def test_unavailable_item_rejected(app, client, seed, menu, login):
    with session_scope(app) as s:
        s.get(MenuItem, menu["tea"]).is_available = False
    login(client, "student@example.com", "student")
    r = client.post("/orders", json={"cafeteria_id": seed.cafeteria, "items": [{"menu_item_id": menu["tea"]}]})
    assert r.status_code == 400
    assert "unavailable" in r.json["error"]


def test_maintenance_mode_blocks_orders(app, client, seed, menu, login):
    with session_scope(app) as s:
        s.add(PlatformSetting(key="maintenance_mode", value_json="true"))
    login(client, "student@example.com", "student")
    r = client.post("/orders", json={"cafeteria_id": seed.cafeteria, "items": [{"menu_item_id": menu["tea"]}]})
    assert r.status_code == 400
    assert "maintenance" in r.json["error"]


def test_minimum_order_amount(app, client, seed, menu, login):
    with session_scope(app) as s:
        s.add(PlatformSetting(key="minimum_order_amount", value_json='"25.00"'))
    login(client, "student@example.com", "student")
    r = client.post("/orders", json={"cafeteria_id": seed.cafeteria, "items": [{"menu_item_id": menu["tea"]}]})
    assert r.status_code == 400
    assert "Minimum order amount" in r.json["error"]


def test_closed_cafeteria_rejects_orders(client, seed, menu, login):
    login(client, "owner@example.com", "cafeteria_manager")
    assert client.post("/cafeteria/status", json={"status": "closed"}).status_code == 200
    client.post("/auth/logout")

    login(client, "student@example.com", "student")
    r = client.post("/orders", json={"cafeteria_id": seed.cafeteria, "items": [{"menu_item_id": menu["tea"]}]})
    assert r.status_code == 400
    assert "not accepting orders" in r.json["error"]


def test_full_lifecycle_deducts_inventory(app, client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu, qty=2)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    for status in ("preparing", "ready", "completed"):
        r = client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": status})
        assert r.status_code == 200, r.json
        assert r.json["order"]["status"] == status
    assert r.json["order"]["completed_at"]

    with session_scope(app) as s:
        beef = s.get(InventoryItem, menu["beef"])
        assert beef.quantity == Decimal("0.600")
        assert s.query(Notification).filter(Notification.type == "alert").count() == 0


def test_completion_low_stock_alerts_and_disables_item(app, client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu, qty=4)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    for status in ("preparing", "ready", "completed"):
        client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": status})

    with session_scope(app) as s:
        assert s.get(InventoryItem, menu["beef"]).quantity == Decimal("0.200")
        assert s.get(MenuItem, menu["burger"]).is_available is True
        alert = s.query(Notification).filter(Notification.type == "alert").one()
        assert alert.user_id == seed.owner
        assert "Beef" in alert.message


def test_deduction_floors_at_zero(app, client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu, qty=6)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    for status in ("preparing", "ready", "completed"):
        client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": status})

    with session_scope(app) as s:
        assert s.get(InventoryItem, menu["beef"]).quantity == Decimal("0")
        assert s.get(MenuItem, menu["burger"]).is_available is False


def test_illegal_transition_rejected(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    r = client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": "completed"})
    assert r.status_code == 400
    assert r.json["error"] == "Cannot change order from 'pending' to 'completed'"

    r = client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": "cancelled"})
    assert r.status_code == 400


def test_student_cancel_rules(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    r = client.post(f"/orders/{order['id']}/cancel", json={"reason": "Changed my mind"})
    assert r.status_code == 200
    assert r.json["order"]["status"] == "cancelled"
    assert r.json["order"]["cancelled_by"] == "student"
    assert r.json["order"]["cancellation_reason"] == "Changed my mind"

    r = client.post(f"/orders/{order['id']}/cancel", json={"reason": "again"})
    assert r.status_code == 400


def test_student_cancel_gets_default_reason(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    r = client.post(f"/orders/{order['id']}/cancel", json={})
    assert r.status_code == 200
    assert r.json["order"]["cancellation_reason"] == "Cancelled by student"


def test_owner_cancel_requires_reason(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    r = client.post(f"/cafeteria/orders/{order['id']}/cancel", json={})
    assert r.status_code == 400
    assert "reason" in r.json["error"]
    r = client.post(f"/cafeteria/orders/{order['id']}/cancel", json={"reason": "Out of buns"})
    assert r.status_code == 200
    assert r.json["order"]["cancelled_by"] == "cafeteria"


def test_student_cannot_cancel_once_preparing(client, seed, menu, login):
    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    client.post("/auth/logout")
    login(client, "owner@example.com", "cafeteria_manager")
    client.post(f"/cafeteria/orders/{order['id']}/status", json={"status": "preparing"})
    client.post("/auth/logout")

    login(client, "student@example.com", "student")
    r = client.post(f"/orders/{order['id']}/cancel", json={"reason": "late"})
    assert r.status_code == 400
    assert "while pending" in r.json["error"]


def test_kitchen_board_groups_pending_as_new(client, seed, menu, login):
    login(client, "student@example.com", "student")
    _place(client, seed, menu)
    client.post("/auth/logout")

    login(client, "owner@example.com", "cafeteria_manager")
    r = client.get("/cafeteria/orders")
    assert r.status_code == 200
    assert len(r.json["orders"]["new"]) == 1
    assert r.json["counts"]["pending"] == 1


def test_admin_order_list_filters_by_category(client, seed, menu, login):
    login(client, "student@example.com", "student")
    first = _place(client, seed, menu)
    _place(client, seed, menu)
    client.post(f"/orders/{first['id']}/cancel", json={"reason": "duplicate"})
    client.post("/auth/logout")

    login(client, "admin@example.com", "admin")
    r = client.get("/admin/orders?status=active")
    assert r.status_code == 200
    assert len(r.json["orders"]) == 1
    r = client.get("/admin/orders?status=cancelled")
    assert [o["id"] for o in r.json["orders"]] == [first["id"]]


def test_recalculate_missing_revenue(app, client, seed, menu, login):
    with session_scope(app) as s:
        legacy = Order(order_number="ORD-20200101-LEGACY", user_id=seed.student, cafeteria_id=seed.cafeteria, total_amount=Decimal("20.00"))
        legacy.items.append(OrderItem(menu_item_id=menu["tea"], quantity=2, price=Decimal("10.00")))
        s.add(legacy)
        s.add(Order(order_number="ORD-20200101-EMPTY0", cafeteria_id=seed.cafeteria, total_amount=Decimal("5.00")))

    login(client, "admin@example.com", "admin")
    r = client.post("/admin/orders/recalculate-revenue")
    assert r.status_code == 200
    assert r.json["total"] == 2
    assert r.json["updated"] == 1
    assert len(r.json["errors"]) == 1

    with session_scope(app) as s:
        o = s.query(Order).filter(Order.order_number == "ORD-20200101-LEGACY").one()
        assert o.subtotal == Decimal("20.00")
        assert o.admin_revenue == Decimal("2.80")
        assert o.total_amount == Decimal("20.80")


def test_student_cannot_view_other_order(app, client, seed, menu, login):
    from app.unieats.models import ROLE_STUDENT
    from app.unieats.users import create_user

    login(client, "student@example.com", "student")
    order = _place(client, seed, menu)
    client.post("/auth/logout")

    with session_scope(app) as s:
        create_user(s, email="other@example.com", password="password123", role=ROLE_STUDENT)
    login(client, "other@example.com", "student")
    assert client.get(f"/orders/{order['id']}").status_code == 404
