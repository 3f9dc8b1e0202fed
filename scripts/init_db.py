import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ctc.config import _normalize_database_url
from app.ctc.constants import ROLE_ADMIN
from app.ctc.models import User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(_normalize_database_url(database_url), future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password; an existing account
    with the admin email is promoted to admin if it isn't one already.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@ctc.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///ctc.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with _session_scope(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrator",
                password_hash=generate_password_hash(admin_password),
                role=ROLE_ADMIN,
                email_verified=True,
                is_active=True,
            )
            s.add(user)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
