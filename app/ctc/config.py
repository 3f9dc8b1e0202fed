import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    media_base_url: str
    storage_local_root: str

    admin_jwt_secret: str
    admin_token_ttl_minutes: int
    download_allowed_hosts: tuple[str, ...]
    admin_diagnostics_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _normalize_database_url(url: str) -> str:
    # Heroku/DO style URLs carry no driver; we ship psycopg (v3).
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _parse_hosts(raw: str) -> tuple[str, ...]:
    return tuple(h.strip().lower() for h in raw.split(",") if h.strip())


def load_settings() -> Settings:
    try:
        ttl = int(_getenv("ADMIN_TOKEN_TTL_MINUTES", "480"))
    except ValueError:
        ttl = 480
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_normalize_database_url(_getenv("DATABASE_URL", "sqlite:///ctc.db")),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        media_base_url=_getenv("MEDIA_BASE_URL", ""),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        admin_jwt_secret=_getenv("ADMIN_JWT_SECRET", "change-me-admin"),
        admin_token_ttl_minutes=ttl,
        download_allowed_hosts=_parse_hosts(_getenv("DOWNLOAD_ALLOWED_HOSTS", "res.cloudinary.com")),
        admin_diagnostics_enabled=_getenv("ADMIN_DIAGNOSTICS_ENABLED", "0") == "1",
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "MEDIA_BASE_URL": s.media_base_url,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "ADMIN_JWT_SECRET": s.admin_jwt_secret,
        "ADMIN_TOKEN_TTL_MINUTES": s.admin_token_ttl_minutes,
        "DOWNLOAD_ALLOWED_HOSTS": s.download_allowed_hosts,
        "ADMIN_DIAGNOSTICS_ENABLED": s.admin_diagnostics_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # upload limit (multi-file uploads go through one request)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
