from __future__ import annotations

from flask import Blueprint, abort, request

from app.ctc.audit import record_event
from app.ctc.db import db_session
from app.ctc.modules.users.service import (
    RoleChangeError,
    change_role,
    list_users,
    profile_stats,
    serialize_user,
    update_profile,
)
from app.ctc.rbac import current_user, require_login, require_permission
from app.ctc.utils import clean_str, json_payload, pagination_meta, parse_pagination

bp = Blueprint("users", __name__)


def users_page() -> dict:
    """Shared by the session and admin-token user listings."""
    s = db_session()
    page, limit = parse_pagination(default_limit=10)
    search = clean_str(request.args.get("search"))
    users, total = list_users(s, page=page, limit=limit, search=search)
    meta = pagination_meta(page, limit, total)
    return {
        "users": [serialize_user(u) for u in users],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": meta["totalPages"],
    }


@bp.get("/api/users")
@require_permission("users.view")
def users_list():
    return users_page()


@bp.post("/api/users/promote")
@require_permission("users.promote")
def users_promote():
    s = db_session()
    u = current_user()
    payload = json_payload()
    try:
        target = change_role(
            s,
            actor=u,
            actor_role=u.role,
            target_id=payload.get("userId"),
            new_role=payload.get("newRole"),
            reason=clean_str(payload.get("reason")),
        )
    except RoleChangeError as e:
        abort(e.status, description=str(e))
    s.commit()
    return {"success": True, "message": f"User role updated to {target.role}", "user": serialize_user(target)}


@bp.get("/api/user/profile")
@require_login
def user_profile():
    s = db_session()
    u = current_user()
    return {"user": serialize_user(u), "stats": profile_stats(s, u)}


@bp.patch("/api/user/profile")
@require_login
def user_profile_update():
    s = db_session()
    u = current_user()
    changes = update_profile(u, json_payload())
    if changes:
        record_event(s, actor=u, action="user.profile_edit", entity_type="User", entity_id=str(u.id), metadata={"changes": changes})
    s.commit()
    return {"user": serialize_user(u), "stats": profile_stats(s, u)}
