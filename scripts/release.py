"""
Release phase: migrate the database to head, confirm every UniEats table
exists, then seed roles/permissions and the platform admin.

Usage:
  python scripts/release.py                 # migrate + seed
  python scripts/release.py --skip-seed     # migrate only
  python scripts/release.py --skip-migrate  # seed only (schema already current)
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production; point DATABASE_URL at Postgres.")
    return url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def verify_schema(db_url: str) -> list[str]:
    from sqlalchemy import create_engine, inspect

    from app.unieats.db import REQUIRED_TABLES

    engine = create_engine(db_url, future=True)
    try:
        insp = inspect(engine)
        return [t for t in REQUIRED_TABLES if not insp.has_table(t)]
    finally:
        engine.dispose()


def run_release(*, skip_migrate: bool = False, skip_seed: bool = False) -> None:
    db_url = _database_url()
    print("=== UniEats release ===", flush=True)

    if not skip_migrate:
        print("Upgrading schema to head...", flush=True)
        migrate(db_url)

    missing = verify_schema(db_url)
    if missing:
        raise RuntimeError(f"Schema incomplete after migration; missing tables: {', '.join(missing)}")
    print("Schema OK.", flush=True)

    if not skip_seed:
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
    print("=== Release complete ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate and seed the UniEats database.")
    parser.add_argument("--skip-migrate", action="store_true", help="Do not run alembic upgrade")
    parser.add_argument("--skip-seed", action="store_true", help="Do not seed roles or the admin user")
    args = parser.parse_args()
    run_release(skip_migrate=args.skip_migrate, skip_seed=args.skip_seed)


if __name__ == "__main__":
    main()
