from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.ctc.audit import record_event
from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.rbac import current_user
from app.ctc.security import ensure_csrf_token
from app.ctc.utils import clean_str, json_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = {}
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if not recent:
        _login_attempts.pop(ip, None)
        return False
    _login_attempts[ip] = recent
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts.setdefault(ip, []).append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def authenticate(email: str, password: str) -> User | None:
    """Rate-limited credential check shared by session and admin-token login."""
    ip = request.remote_addr or "unknown"
    if _check_rate_limit(ip):
        abort(429, description="Too many login attempts. Please wait 5 minutes.")
    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        return None

    _login_attempts.pop(ip, None)
    return user


def _start_session(user: User) -> None:
    session["user_id"] = user.id
    session.permanent = True
    g.current_user = user


@bp.get("/csrf")
def csrf():
    return {"csrfToken": ensure_csrf_token()}


@bp.post("/register")
def register():
    from app.ctc.modules.users.service import serialize_user

    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    name = clean_str(payload.get("name"))

    errors = []
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not name:
        errors.append("Name is required.")
    if errors:
        abort(400, description=" ".join(errors))

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        abort(400, description="An account with this email already exists")

    now = datetime.utcnow()
    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(password),
        created_at=now,
        updated_at=now,
        last_login_at=now,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()
    _start_session(user)
    return {"user": serialize_user(user)}, 201


@bp.post("/login")
def login():
    from app.ctc.modules.users.service import serialize_user

    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""

    user = authenticate(email, password)
    if user is None:
        abort(401, description="Invalid credentials")

    try:
        s = db_session()
        user.last_login_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise

    _start_session(user)
    return {"user": serialize_user(user)}


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return {"success": True}


@bp.get("/me")
def me():
    from app.ctc.modules.users.service import serialize_user

    return {"user": serialize_user(current_user())}
