from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, g, request, session
from sqlalchemy import func

from app.ctc.audit import record_event
from app.ctc.auth import authenticate
from app.ctc.constants import ROLE_ADMIN, ROLE_OPERATOR, VALID_ROLES
from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.modules.communities.models import Community, CommunityFollow, CommunityMembership, CommunityUpdate
from app.ctc.modules.communities.service import serialize_community
from app.ctc.modules.events.models import Event, EventRegistration
from app.ctc.modules.events.service import delete_event
from app.ctc.modules.notifications.service import send_notification
from app.ctc.modules.users.routes import users_page
from app.ctc.modules.users.service import RoleChangeError, change_role, serialize_user
from app.ctc.rbac import current_user, issue_admin_token, require_admin_token, require_permission
from app.ctc.utils import clean_str, json_payload

bp = Blueprint("admin", __name__)


def _diagnostics_allowed() -> bool:
    env = (current_app.config.get("ENV") or "development").strip().lower()
    if env not in ("prod", "production"):
        return True
    return bool(current_app.config.get("ADMIN_DIAGNOSTICS_ENABLED"))


def _admin_actor() -> User | None:
    claims = getattr(g, "admin_claims", None) or {}
    try:
        return db_session().get(User, int(claims.get("sub")))
    except (TypeError, ValueError):
        return None


def _month_window(now: datetime, months: int) -> datetime:
    index = now.year * 12 + (now.month - 1) - (months - 1)
    return datetime(index // 12, index % 12 + 1, 1)


# ---------- Token login ----------
@bp.post("/api/admin/login")
def admin_login():
    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    user = authenticate(email, payload.get("password") or "")
    if user is None or user.role != ROLE_ADMIN:
        abort(401, description="Invalid credentials")
    token, expires_in = issue_admin_token(user)
    s = db_session()
    record_event(s, actor=user, action="admin.token_issued", entity_type="User", entity_id=str(user.id))
    s.commit()
    return {"token": token, "expiresIn": expires_in, "user": serialize_user(user)}


# ---------- Dashboards (bearer token) ----------
@bp.get("/api/admin/dashboard/stats")
@require_admin_token
def dashboard_stats():
    s = db_session()
    now = datetime.utcnow()
    since = _month_window(now, 6)

    recent_users = s.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(5).all()
    growth: dict[tuple[int, int], int] = {}
    for (created_at,) in s.query(User.created_at).filter(User.created_at >= since):
        key = (created_at.year, created_at.month)
        growth[key] = growth.get(key, 0) + 1

    return {
        "totalUsers": s.query(func.count(User.id)).scalar() or 0,
        "totalCommunities": s.query(func.count(Community.id)).scalar() or 0,
        "totalEvents": s.query(func.count(Event.id)).scalar() or 0,
        "totalRegistrations": s.query(func.count(EventRegistration.id)).scalar() or 0,
        "recentUsers": [serialize_user(u) for u in recent_users],
        "monthlyGrowth": [
            {"year": year, "month": month, "count": count} for (year, month), count in sorted(growth.items())
        ],
    }


@bp.get("/api/admin/communities/stats")
@require_admin_token
def communities_stats():
    s = db_session()
    by_status = dict(s.query(Community.status, func.count()).group_by(Community.status).all())
    recent = s.query(Community).order_by(Community.created_at.desc(), Community.id.desc()).limit(5).all()
    return {
        "total": sum(by_status.values()),
        "active": by_status.get("active", 0),
        "pending": by_status.get("pending", 0),
        "rejected": by_status.get("rejected", 0),
        "recentCommunities": [serialize_community(c) for c in recent],
    }


@bp.get("/api/admin/users")
@require_admin_token
def admin_users_list():
    return users_page()


@bp.post("/api/admin/users/promote")
@require_admin_token
def admin_users_promote():
    s = db_session()
    payload = json_payload()
    try:
        target = change_role(
            s,
            actor=_admin_actor(),
            actor_role=ROLE_ADMIN,
            target_id=payload.get("userId"),
            new_role=payload.get("newRole"),
            reason=clean_str(payload.get("reason")),
        )
    except RoleChangeError as e:
        abort(e.status, description=str(e))
    s.commit()
    return {"success": True, "message": f"User role updated to {target.role}", "user": serialize_user(target)}


# ---------- Community delete (session admin) ----------
@bp.delete("/api/admin/communities/delete/<int:community_id>")
@require_permission("communities.delete")
def community_delete(community_id: int):
    s = db_session()
    u = current_user()
    community = s.get(Community, community_id)
    if not community:
        abort(404, description="Community not found")

    name = community.name
    member_ids = [m.user_id for m in community.memberships]
    try:
        events = s.query(Event).filter(Event.community_id == community.id).all()
        # Members hear about it first; these inserts commit or roll back with the delete.
        for member_id in member_ids:
            send_notification(
                s,
                user_id=member_id,
                title="Community Deleted",
                message=f'The community "{name}" has been deleted by an administrator.',
                type="warning",
                sent_by=u.email,
            )
        s.query(CommunityUpdate).filter(CommunityUpdate.community_id == community.id).delete(synchronize_session=False)
        for event in events:
            delete_event(s, event)
        s.query(CommunityFollow).filter(CommunityFollow.community_id == community.id).delete(synchronize_session=False)
        s.query(CommunityMembership).filter(CommunityMembership.community_id == community.id).delete(
            synchronize_session=False
        )
        s.expire(community, ["memberships"])
        record_event(
            s,
            actor=u,
            action="community.delete",
            entity_type="Community",
            entity_id=str(community_id),
            metadata={"name": name, "events": len(events), "members": len(member_ids)},
        )
        s.delete(community)
        s.commit()
    except Exception:
        s.rollback()
        current_app.logger.exception(
            "Community delete failed (community_id=%s request_id=%s)", community_id, getattr(g, "request_id", None)
        )
        raise

    return {
        "success": True,
        "message": f'Community "{name}" deleted successfully',
        "deletedEvents": len(events),
        "notifiedMembers": len(member_ids),
    }


# ---------- Diagnostics ----------
@bp.route("/api/debug/user-role", methods=["GET", "POST"])
def debug_user_role():
    if not _diagnostics_allowed():
        abort(404)
    s = db_session()
    u = current_user()

    if request.method == "POST":
        payload = json_payload()
        new_role = clean_str(payload.get("newRole"))
        if new_role not in VALID_ROLES:
            abort(400, description=f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}")
        admin_exists = s.query(User.id).filter(User.role == ROLE_ADMIN).first() is not None
        if u.role != ROLE_ADMIN and admin_exists:
            abort(403, description="Only admins can change roles once an admin exists")
        old_role = u.role
        u.role = new_role
        u.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=u,
            action="user.role_self_change",
            entity_type="User",
            entity_id=str(u.id),
            metadata={"old": old_role, "new": new_role, "bootstrap": not admin_exists},
        )
        s.commit()
        current_app.logger.warning("User %s changed own role %s -> %s", u.email, old_role, new_role)

    return {
        "session": {"userId": session.get("user_id"), "requestId": getattr(g, "request_id", None)},
        "user": serialize_user(u),
        "isAdmin": u.role == ROLE_ADMIN,
        "isOperator": u.role == ROLE_OPERATOR,
        "canAccessAdmin": u.role in (ROLE_ADMIN, ROLE_OPERATOR),
    }
