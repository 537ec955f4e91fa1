import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.unieats.models import ROLE_ADMIN, User  # noqa: E402
from app.unieats.rbac import sync_roles_and_permissions  # noqa: E402
from app.unieats.users import create_user, get_user_by_email, set_user_role  # noqa: E402


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@unieats.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///unieats.db").strip()

    with _session_scope(db_url) as s:
        roles = sync_roles_and_permissions(s)

        admin: User | None = get_user_by_email(s, admin_email)
        if admin is None:
            create_user(s, email=admin_email, password=admin_password, role=ROLE_ADMIN, full_name="Platform Admin")
        else:
            if admin.role != ROLE_ADMIN or roles[ROLE_ADMIN] not in admin.roles:
                set_user_role(s, admin, ROLE_ADMIN)
            admin.is_active = True
            admin.is_suspended = False

    print("Seed complete.")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
