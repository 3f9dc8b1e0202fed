from __future__ import annotations

from flask import Blueprint, abort

from app.ctc.constants import VALID_ROLES
from app.ctc.db import db_session
from app.ctc.modules.notifications.models import Notification
from app.ctc.modules.notifications.service import (
    NoTargetUsers,
    send_notification,
    serialize_notification,
    validate_notification_payload,
)
from app.ctc.rbac import current_user, require_login, require_permission
from app.ctc.utils import clean_str, json_payload, pagination_meta, parse_pagination

bp = Blueprint("notifications", __name__)


@bp.get("/api/notifications")
@require_login
def notifications_list():
    s = db_session()
    u = current_user()
    page, limit = parse_pagination(default_limit=20)
    q = s.query(Notification).filter(Notification.user_id == u.id)
    total = q.count()
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset((page - 1) * limit).limit(limit).all()
    unread = s.query(Notification).filter(Notification.user_id == u.id, Notification.read.is_(False)).count()
    return {
        "notifications": [serialize_notification(n) for n in rows],
        "unreadCount": unread,
        "pagination": pagination_meta(page, limit, total),
    }


@bp.post("/api/notifications/<int:notification_id>/read")
@require_login
def notification_mark_read(notification_id: int):
    s = db_session()
    u = current_user()
    n = s.get(Notification, notification_id)
    if not n or n.user_id != u.id:
        abort(404, description="Notification not found")
    n.read = True
    s.commit()
    return {"success": True, "notification": serialize_notification(n)}


@bp.post("/api/notifications/read-all")
@require_login
def notifications_mark_all_read():
    s = db_session()
    u = current_user()
    updated = (
        s.query(Notification)
        .filter(Notification.user_id == u.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    s.commit()
    return {"success": True, "updated": updated}


@bp.post("/api/notifications/send")
@require_permission("notifications.send")
def notifications_send():
    s = db_session()
    u = current_user()
    payload = json_payload()

    errors = validate_notification_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))

    user_id = payload.get("userId")
    if user_id not in (None, ""):
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            abort(400, description="userId must be an integer")
    else:
        user_id = None
    role = clean_str(payload.get("role"))
    if role and role not in VALID_ROLES:
        abort(400, description="Invalid role")

    try:
        targets = send_notification(
            s,
            title=clean_str(payload.get("title")) or "",
            message=clean_str(payload.get("message")) or "",
            type=clean_str(payload.get("type")) or "info",
            user_id=user_id,
            user_email=clean_str(payload.get("userEmail")),
            role=role,
            action_url=clean_str(payload.get("actionUrl")),
            action_text=clean_str(payload.get("actionText")),
            sent_by=u.email,
        )
    except NoTargetUsers as e:
        abort(404, description=str(e))
    s.commit()
    return {
        "success": True,
        "message": f"Notification sent to {len(targets)} user(s)",
        "notificationsSent": len(targets),
        "targetUsers": [{"id": t.id, "email": t.email, "name": t.name} for t in targets],
    }
