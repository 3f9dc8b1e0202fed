from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

import jwt
from flask import abort, current_app, g, request

from app.ctc.constants import ROLE_ADMIN, ROLE_PERMISSIONS
from app.ctc.models import User
from app.ctc.security import bearer_token


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in ROLE_PERMISSIONS.get(user.role, frozenset())


def current_user() -> User:
    """The logged-in user; aborts with 401 when there is none."""
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        abort(401, description="Unauthorized")
    return user


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403, description="Forbidden")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


# ---------- Admin bearer tokens ----------
def issue_admin_token(user: User) -> tuple[str, int]:
    """Sign an HS256 admin token. Returns (token, expires_in_seconds)."""
    ttl = int(current_app.config.get("ADMIN_TOKEN_TTL_MINUTES") or 480) * 60
    now = datetime.utcnow()
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
    }
    token = jwt.encode(claims, current_app.config["ADMIN_JWT_SECRET"], algorithm="HS256")
    return token, ttl


def decode_admin_token(token: str) -> dict[str, Any] | None:
    try:
        claims = jwt.decode(token, current_app.config["ADMIN_JWT_SECRET"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        current_app.logger.info("Admin token expired (request_id=%s)", getattr(g, "request_id", None))
        return None
    except jwt.InvalidTokenError:
        return None
    if claims.get("role") != ROLE_ADMIN:
        return None
    return claims


def require_admin_token(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        token = bearer_token(request)
        if not token:
            abort(401, description="Unauthorized: No token provided")
        claims = decode_admin_token(token)
        if claims is None:
            abort(401, description="Unauthorized: Invalid token")
        g.admin_claims = claims
        return fn(*args, **kwargs)

    return wrapped
