"""
Release phase for the CTC API: config guardrails, Alembic migrations, admin seed.

Usage:
  python scripts/release.py

Set ENV=production on the deployed app; the guardrails below only bite there.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ctc.config import Settings, load_settings

# Development defaults from app.ctc.config.
_PLACEHOLDER_SECRETS = {
    "SECRET_KEY": "change-me",
    "ADMIN_JWT_SECRET": "change-me-admin",
}


def production_config_errors(settings: Settings, environ: dict[str, str] | None = None) -> list[str]:
    """Problems that make a production release unsafe. Empty outside production."""
    environ = os.environ if environ is None else environ
    if settings.env.lower() not in ("prod", "production"):
        return []

    errors = []
    if not (environ.get("DATABASE_URL") or "").strip():
        errors.append("DATABASE_URL is not set.")
    elif settings.database_url.startswith("sqlite"):
        errors.append("DATABASE_URL points at SQLite; use Postgres in production.")
    if settings.secret_key == _PLACEHOLDER_SECRETS["SECRET_KEY"]:
        errors.append("SECRET_KEY is still the development placeholder.")
    if settings.admin_jwt_secret == _PLACEHOLDER_SECRETS["ADMIN_JWT_SECRET"]:
        errors.append("ADMIN_JWT_SECRET is still the development placeholder; admin tokens would be forgeable.")
    if not (environ.get("ADMIN_PASSWORD") or "").strip():
        errors.append("ADMIN_PASSWORD is not set; the seeded admin would get the default password.")
    if settings.storage_backend.lower() == "s3":
        missing = [
            name
            for name, value in (
                ("S3_ENDPOINT", settings.s3_endpoint),
                ("S3_BUCKET", settings.s3_bucket),
                ("S3_ACCESS_KEY_ID", settings.s3_access_key_id),
                ("S3_SECRET_ACCESS_KEY", settings.s3_secret_access_key),
            )
            if not value
        ]
        if missing:
            errors.append(f"STORAGE_BACKEND=s3 but missing: {', '.join(missing)}.")
    if not settings.download_allowed_hosts:
        errors.append("DOWNLOAD_ALLOWED_HOSTS is empty; /api/download would reject every file.")
    return errors


def run_release() -> None:
    settings = load_settings()
    errors = production_config_errors(settings)
    if errors:
        raise RuntimeError("Refusing to release:\n  - " + "\n  - ".join(errors))

    print("=== CTC release start ===", flush=True)
    print(f"ENV={settings.env} storage={settings.storage_backend}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    print("Seeding admin user (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=settings.database_url)
    print(f"Download proxy allows: {', '.join(settings.download_allowed_hosts)}", flush=True)
    print("=== CTC release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
