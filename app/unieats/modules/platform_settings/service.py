"""
Platform settings: financial rates and feature switches stored as key/value rows.

Rows that were never written fall back to DEFAULT_SETTINGS, so a fresh
database behaves like the documented revenue model (4% fee capped at 20,
10% commission).
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from app.unieats.audit import record_event
from app.unieats.modules.platform_settings.models import PlatformSetting

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.unieats.models import User


DEFAULT_SETTINGS: dict[str, Any] = {
    "platform_name": "UniEats",
    "support_email": "support@unieats.com",
    "timezone": "Africa/Cairo",
    "maintenance_mode": False,
    "maintenance_message": "We're currently performing scheduled maintenance. Please check back soon.",
    "new_registrations": True,
    "cafeteria_applications": True,
    "service_fee_rate": "0.04",
    "service_fee_cap": "20.00",
    "commission_rate": "0.10",
    "minimum_order_amount": "0.00",
    "default_preparation_time": 15,
}

_RATE_KEYS = ("service_fee_rate", "commission_rate")
_MONEY_KEYS = ("service_fee_cap", "minimum_order_amount")
MAX_MONEY_SETTING = Decimal("1000000")
_BOOL_KEYS = ("maintenance_mode", "new_registrations", "cafeteria_applications")
_TEXT_KEYS = ("platform_name", "support_email", "timezone", "maintenance_message")


@dataclass(frozen=True)
class FeeRates:
    service_fee_rate: Decimal
    service_fee_cap: Decimal
    commission_rate: Decimal

    @classmethod
    def defaults(cls) -> "FeeRates":
        return cls(
            service_fee_rate=Decimal(DEFAULT_SETTINGS["service_fee_rate"]),
            service_fee_cap=Decimal(DEFAULT_SETTINGS["service_fee_cap"]),
            commission_rate=Decimal(DEFAULT_SETTINGS["commission_rate"]),
        )


def get_all_settings(s: "Session") -> dict[str, Any]:
    values = dict(DEFAULT_SETTINGS)
    for row in s.query(PlatformSetting).all():
        if row.key in values:
            values[row.key] = json.loads(row.value_json)
    return values


def get_setting(s: "Session", key: str) -> Any:
    if key not in DEFAULT_SETTINGS:
        raise KeyError(key)
    row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
    if row is None:
        return DEFAULT_SETTINGS[key]
    return json.loads(row.value_json)


def get_fee_rates(s: "Session") -> FeeRates:
    values = get_all_settings(s)
    return FeeRates(
        service_fee_rate=Decimal(str(values["service_fee_rate"])),
        service_fee_cap=Decimal(str(values["service_fee_cap"])),
        commission_rate=Decimal(str(values["commission_rate"])),
    )


def _to_decimal(value: Any) -> Decimal | None:
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def validate_settings_payload(payload: dict) -> tuple[dict[str, Any], list[str]]:
    """Normalize a settings payload. Returns (clean values, errors); unknown keys are errors."""
    clean: dict[str, Any] = {}
    errors: list[str] = []
    for key, raw in payload.items():
        if key == "csrf_token":
            continue
        if key not in DEFAULT_SETTINGS:
            errors.append(f"Unknown setting: {key}")
            continue
        if key in _RATE_KEYS:
            d = _to_decimal(raw)
            if d is None or d < 0 or d > 1:
                errors.append(f"{key} must be a number between 0 and 1.")
                continue
            clean[key] = str(d)
        elif key in _MONEY_KEYS:
            d = _to_decimal(raw)
            if d is None or d < 0 or d >= MAX_MONEY_SETTING:
                errors.append(f"{key} must be a non-negative amount below {MAX_MONEY_SETTING}.")
                continue
            clean[key] = str(d.quantize(Decimal("0.01")))
        elif key in _BOOL_KEYS:
            clean[key] = _to_bool(raw)
        elif key == "default_preparation_time":
            try:
                minutes = int(raw)
            except (TypeError, ValueError):
                errors.append("default_preparation_time must be a whole number of minutes.")
                continue
            if minutes <= 0:
                errors.append("default_preparation_time must be positive.")
                continue
            clean[key] = minutes
        elif key in _TEXT_KEYS:
            text = (str(raw) if raw is not None else "").strip()
            if not text:
                errors.append(f"{key} cannot be empty.")
                continue
            clean[key] = text
    return clean, errors


def update_settings(s: "Session", values: dict[str, Any], user: "User") -> dict[str, dict[str, Any]]:
    """Persist already-validated values; returns the {key: {old, new}} change set."""
    current = get_all_settings(s)
    changes: dict[str, dict[str, Any]] = {}
    now = datetime.utcnow()
    for key, new in values.items():
        old = current.get(key)
        if old == new:
            continue
        row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
        if row is None:
            row = PlatformSetting(key=key, value_json=json.dumps(new))
            s.add(row)
        else:
            row.value_json = json.dumps(new)
        row.updated_at = now
        row.updated_by_user_id = user.id
        changes[key] = {"old": old, "new": new}

    if changes:
        record_event(
            s,
            actor=user,
            action="settings.update",
            entity_type="PlatformSetting",
            entity_id=",".join(sorted(changes)),
            metadata={"changes": changes},
            severity="medium",
        )
    return changes
