from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.ctc.audit import record_event
from app.ctc.constants import ELEVATED_ROLES, ROLE_ADMIN, ROLE_OPERATOR, VALID_ROLES
from app.ctc.models import User
from app.ctc.utils import clean_str, isoformat, like_pattern

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class RoleChangeError(ValueError):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def serialize_user(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "image": u.image,
        "role": u.role,
        "bio": u.bio,
        "location": u.location,
        "website": u.website,
        "emailVerified": u.email_verified,
        "isActive": u.is_active,
        "createdAt": isoformat(u.created_at),
        "lastLoginAt": isoformat(u.last_login_at),
    }


def list_users(s: "Session", *, page: int, limit: int, search: str | None) -> tuple[list[User], int]:
    q = s.query(User)
    if search:
        like = like_pattern(search)
        q = q.filter(or_(User.name.ilike(like, escape="\\"), User.email.ilike(like, escape="\\")))
    total = q.count()
    users = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return users, total


def change_role(
    s: "Session",
    *,
    actor: User | None,
    actor_role: str,
    target_id: Any,
    new_role: Any,
    reason: str | None = None,
) -> User:
    """
    Validate and apply a role change. Operators may only hand out non-elevated roles.
    Raises RoleChangeError carrying the HTTP status to report.
    """
    role = clean_str(new_role)
    if target_id in (None, "") or not role:
        raise RoleChangeError("userId and newRole are required")
    if role not in VALID_ROLES:
        raise RoleChangeError(f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}")
    if actor_role == ROLE_OPERATOR and role in ELEVATED_ROLES:
        raise RoleChangeError("Operators cannot assign operator or admin roles", status=403)
    if actor_role not in (ROLE_OPERATOR, ROLE_ADMIN):
        raise RoleChangeError("Forbidden", status=403)
    try:
        target_pk = int(target_id)
    except (TypeError, ValueError):
        raise RoleChangeError("userId must be an integer")

    target = s.get(User, target_pk)
    if not target:
        raise RoleChangeError("User not found", status=404)

    old_role = target.role
    target.role = role
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.role_change",
        entity_type="User",
        entity_id=str(target.id),
        reason=reason,
        metadata={"old": old_role, "new": role, "actor_role": actor_role},
    )
    return target


def profile_stats(s: "Session", user: User) -> dict[str, int]:
    from app.ctc.modules.communities.models import CommunityFollow, CommunityMembership
    from app.ctc.modules.events.models import Event, EventRegistration

    owned = (
        s.query(func.count())
        .select_from(CommunityMembership)
        .filter(CommunityMembership.user_id == user.id, CommunityMembership.is_admin.is_(True))
        .scalar()
    )
    joined = (
        s.query(func.count())
        .select_from(CommunityMembership)
        .filter(CommunityMembership.user_id == user.id, CommunityMembership.is_admin.is_(False))
        .scalar()
    )
    created = s.query(func.count(Event.id)).filter(Event.creator_id == user.id).scalar()
    attended = s.query(func.count(EventRegistration.id)).filter(EventRegistration.user_id == user.id).scalar()
    following = (
        s.query(func.count()).select_from(CommunityFollow).filter(CommunityFollow.user_id == user.id).scalar()
    )
    return {
        "communitiesOwned": int(owned or 0),
        "communitiesJoined": int(joined or 0),
        "eventsCreated": int(created or 0),
        "eventsAttended": int(attended or 0),
        "followingCount": int(following or 0),
    }


_PROFILE_FIELDS = ("name", "bio", "location", "website", "image")


def update_profile(user: User, payload: dict) -> dict[str, Any]:
    changes = {}
    for key in _PROFILE_FIELDS:
        if key not in payload:
            continue
        new = clean_str(payload.get(key))
        if key == "name" and not new:
            continue
        if new != getattr(user, key):
            changes[key] = {"old": getattr(user, key), "new": new}
            setattr(user, key, new)
    user.updated_at = datetime.utcnow()
    return changes
