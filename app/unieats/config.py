import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    # Menu and cafeteria images
    storage_backend: str
    local_storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    max_upload_mb: int

    session_hours: int
    login_rate_limit: int
    login_rate_window_seconds: int
    currency: str

    @property
    def is_production(self) -> bool:
        return self.env in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    try:
        return int(_getenv(name) or default)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development").lower(),
        database_url=_getenv("DATABASE_URL", "sqlite:///unieats.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local").lower(),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT"),
        s3_region=_getenv("S3_REGION", "us-east-1"),
        s3_bucket=_getenv("S3_BUCKET"),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID"),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY"),
        max_upload_mb=_getenv_int("MAX_UPLOAD_MB", 10),
        session_hours=_getenv_int("SESSION_HOURS", 8),
        login_rate_limit=_getenv_int("LOGIN_RATE_LIMIT", 5),
        login_rate_window_seconds=_getenv_int("LOGIN_RATE_WINDOW_SECONDS", 300),
        currency=_getenv("CURRENCY", "EGP"),
    )


def load_config() -> dict:
    """Flatten Settings into Flask config keys."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW_SECONDS": s.login_rate_window_seconds,
        "CURRENCY": s.currency,
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_hours),
        "SESSION_REFRESH_EACH_REQUEST": True,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
    }
