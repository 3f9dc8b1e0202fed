from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert

from app.ctc.constants import NOTIFICATION_TYPES
from app.ctc.models import User
from app.ctc.modules.notifications.models import Notification
from app.ctc.utils import clean_str, isoformat

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class NoTargetUsers(LookupError):
    pass


def validate_notification_payload(payload: dict) -> list[str]:
    errors = []
    if not clean_str(payload.get("title")):
        errors.append("Title is required.")
    if not clean_str(payload.get("message")):
        errors.append("Message is required.")
    ntype = clean_str(payload.get("type")) or "info"
    if ntype not in NOTIFICATION_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(NOTIFICATION_TYPES)}")
    return errors


def resolve_targets(
    s: "Session",
    *,
    user_id: int | None = None,
    user_email: str | None = None,
    role: str | None = None,
) -> list[User]:
    """First matching selector wins: user id, then email, then role, else every active user."""
    q = s.query(User).filter(User.is_active.is_(True))
    if user_id is not None:
        q = q.filter(User.id == user_id)
    elif user_email:
        q = q.filter(User.email == user_email.strip().lower())
    elif role:
        q = q.filter(User.role == role)
    return q.order_by(User.id.asc()).all()


def send_notification(
    s: "Session",
    *,
    title: str,
    message: str,
    type: str = "info",
    user_id: int | None = None,
    user_email: str | None = None,
    role: str | None = None,
    action_url: str | None = None,
    action_text: str | None = None,
    sent_by: str = "system",
) -> list[User]:
    """Insert one notification per target user. Returns the targets."""
    targets = resolve_targets(s, user_id=user_id, user_email=user_email, role=role)
    if not targets:
        raise NoTargetUsers("No target users found")

    now = datetime.utcnow()
    rows = [
        {
            "user_id": u.id,
            "user_email": u.email,
            "title": title,
            "message": message,
            "type": type,
            "action_url": action_url,
            "action_text": action_text,
            "read": False,
            "created_at": now,
            "sent_by": sent_by,
        }
        for u in targets
    ]
    s.execute(insert(Notification), rows)
    return targets


def notify_quietly(s: "Session", **kwargs: Any) -> int:
    """
    Best-effort `send_notification` inside a savepoint.
    Failures are logged and rolled back to the savepoint; the caller's pending work is kept.
    """
    try:
        with s.begin_nested():
            return len(send_notification(s, **kwargs))
    except NoTargetUsers:
        logger.info("Notification %r had no recipients", kwargs.get("title"))
    except Exception:
        logger.exception("Failed to send notification %r", kwargs.get("title"))
    return 0


def serialize_notification(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "userId": n.user_id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "actionUrl": n.action_url,
        "actionText": n.action_text,
        "read": n.read,
        "createdAt": isoformat(n.created_at),
        "sentBy": n.sent_by,
    }
