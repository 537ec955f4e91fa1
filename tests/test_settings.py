from decimal import Decimal

import pytest

from app.unieats.db import session_scope
from app.unieats.modules.platform_settings.service import (
    DEFAULT_SETTINGS,
    get_fee_rates,
    validate_settings_payload,
)


def test_validate_settings_payload():
    clean, errors = validate_settings_payload(
        {
            "service_fee_rate": "0.05",
            "service_fee_cap": "15",
            "maintenance_mode": "on",
            "default_preparation_time": "20",
            "platform_name": "  Campus Eats ",
        }
    )
    assert errors == []
    assert clean == {
        "service_fee_rate": "0.05",
        "service_fee_cap": "15.00",
        "maintenance_mode": True,
        "default_preparation_time": 20,
        "platform_name": "Campus Eats",
    }


def test_validate_settings_rejects_bad_values():
    _, errors = validate_settings_payload(
        {
            "commission_rate": "1.5",
            "minimum_order_amount": "-1",
            "default_preparation_time": "0",
            "support_email": "",
            "favourite_colour": "blue",
        }
    )
    assert len(errors) == 5
    assert "Unknown setting: favourite_colour" in errors


@pytest.mark.parametrize(
    "key,value",
    [
        ("service_fee_rate", "NaN"),
        ("commission_rate", "Infinity"),
        ("service_fee_cap", "Infinity"),
        ("minimum_order_amount", "sNaN"),
        ("service_fee_cap", "1e999999"),
    ],
)
def test_non_finite_amounts_are_rejected(key, value):
    clean, errors = validate_settings_payload({key: value})
    assert clean == {}
    assert len(errors) == 1


def test_non_finite_settings_return_400(client, seed, login):
    login(client, "admin@example.com", "admin")
    assert client.post("/admin/settings", json={"service_fee_rate": "NaN"}).status_code == 400
    assert client.post("/admin/settings", json={"service_fee_cap": "Infinity"}).status_code == 400


def test_defaults_without_rows(app, seed):
    with session_scope(app) as s:
        rates = get_fee_rates(s)
    assert rates.service_fee_rate == Decimal(DEFAULT_SETTINGS["service_fee_rate"])
    assert rates.service_fee_cap == Decimal("20.00")
    assert rates.commission_rate == Decimal("0.10")


def test_admin_updates_settings_and_audits(app, client, seed, login):
    login(client, "admin@example.com", "admin")
    r = client.post("/admin/settings", json={"commission_rate": "0.12", "new_registrations": False})
    assert r.status_code == 200
    assert r.json["changes"]["commission_rate"] == {"old": "0.10", "new": "0.12"}
    assert r.json["settings"]["new_registrations"] is False

    r = client.get("/admin/audit?action=settings.update")
    assert len(r.json["events"]) == 1
    assert r.json["events"][0]["category"] == "system"

    with session_scope(app) as s:
        assert get_fee_rates(s).commission_rate == Decimal("0.12")


def test_unchanged_settings_record_nothing(client, seed, login):
    login(client, "admin@example.com", "admin")
    r = client.post("/admin/settings", json={"commission_rate": "0.10"})
    assert r.json["changes"] == {}
    assert client.get("/admin/audit?action=settings.update").json["events"] == []


def test_registration_switch(client, seed, login):
    login(client, "admin@example.com", "admin")
    client.post("/admin/settings", json={"new_registrations": False})
    client.post("/auth/logout")
    r = client.post("/auth/register", json={"email": "x@example.com", "password": "longenough", "full_name": "X"})
    assert r.status_code == 403


def test_manager_cannot_edit_settings(client, seed, login):
    login(client, "owner@example.com", "cafeteria_manager")
    assert client.post("/admin/settings", json={"commission_rate": "0"}).status_code == 403
