"""
Central constants for the UniEats application.
"""
from __future__ import annotations

CURRENCY_CODE = "EGP"

# Permission catalog: key -> display name.
PERMISSIONS = {
    # Admin back-office
    "admin.view": "Admin: view shell",
    "users.view": "Users: view",
    "users.manage": "Users: create, suspend, change role",
    "audit.view": "Audit logs: view",
    "settings.view": "Platform settings: view",
    "settings.edit": "Platform settings: edit",
    "cafeterias.review": "Cafeterias: review applications, revoke",
    "cafeterias.view_all": "Cafeterias: view all",
    "orders.view_all": "Orders: view all",
    "orders.manage_all": "Orders: maintenance",
    "support.manage": "Support: manage tickets",
    "notifications.send": "Notifications: send",
    "analytics.view": "Analytics: view platform dashboards",
    # Cafeteria owner back-office
    "cafeteria.dashboard": "Cafeteria: view dashboard",
    "cafeteria.profile": "Cafeteria: edit profile and status",
    "menu.manage": "Menu: manage items",
    "inventory.manage": "Inventory: manage stock",
    "orders.fulfil": "Orders: update status for own cafeteria",
    # Shared / student
    "orders.place": "Orders: place",
    "menu.rate": "Menu: rate items",
    "support.create": "Support: open tickets",
    "chat.use": "Chat: use support chat",
    "notifications.view": "Notifications: view own",
}

_SHARED = ("support.create", "chat.use", "notifications.view")

ROLE_NAMES = {
    "student": "Student",
    "cafeteria_manager": "Cafeteria Manager",
    "admin": "Administrator",
}

ROLE_PERMISSIONS = {
    "student": ("orders.place", "menu.rate") + _SHARED,
    "cafeteria_manager": (
        "cafeteria.dashboard",
        "cafeteria.profile",
        "menu.manage",
        "inventory.manage",
        "orders.fulfil",
    )
    + _SHARED,
    "admin": tuple(PERMISSIONS),
}

MENU_CATEGORIES = (
    "Breakfast",
    "Lunch",
    "Dinner",
    "Snacks",
    "Beverages",
    "Desserts",
    "Vegan",
    "Vegetarian",
    "Gluten-Free",
    "Keto-Friendly",
    "Low-Calorie",
    "Protein-Rich",
)

INVENTORY_CATEGORIES = (
    "produce",
    "meat",
    "dairy",
    "bakery",
    "grains",
    "beverages",
    "condiments",
    "frozen",
    "other",
)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})
