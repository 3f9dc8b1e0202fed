from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_

from app.ctc.audit import record_event
from app.ctc.constants import EVENT_TYPES
from app.ctc.modules.communities.models import CommunityMembership, CommunityUpdate
from app.ctc.modules.communities.service import community_summary, relation_maps
from app.ctc.modules.events.models import Event, EventRegistration
from app.ctc.utils import clean_str, isoformat, parse_iso_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.ctc.models import User


class EventError(ValueError):
    pass


def today_iso(today: date | None = None) -> str:
    return (today or date.today()).isoformat()


def _parse_capacity(raw: Any) -> int | None:
    if raw in (None, ""):
        return None
    value = int(raw)
    if value < 1:
        raise ValueError("capacity must be positive")
    return value


def validate_event_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate event create/update payload. Returns list of errors."""
    errors = []
    if not partial:
        if not payload.get("communityId"):
            errors.append("communityId is required.")
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
        if not clean_str(payload.get("date")):
            errors.append("Date is required.")
    elif "title" in payload and not clean_str(payload.get("title")):
        errors.append("Title cannot be empty.")

    for key in ("date", "endDate"):
        if clean_str(payload.get(key)):
            try:
                parse_iso_date(payload.get(key))
            except ValueError:
                errors.append(f"{key} must be an ISO date (YYYY-MM-DD).")

    event_type = clean_str(payload.get("eventType"))
    if event_type and event_type not in EVENT_TYPES:
        errors.append(f"Invalid eventType. Must be one of: {', '.join(EVENT_TYPES)}")

    if "maxCapacity" in payload:
        try:
            _parse_capacity(payload.get("maxCapacity"))
        except (TypeError, ValueError):
            errors.append("maxCapacity must be a positive integer.")

    tags = payload.get("tags")
    if tags is not None and not isinstance(tags, list):
        errors.append("tags must be a list.")
    return errors


def _iso_or_none(raw: Any) -> str | None:
    d = parse_iso_date(raw)
    return d.isoformat() if d else None


def create_event(s: "Session", community_id: int, payload: dict, user: "User") -> Event:
    now = datetime.utcnow()
    end_date = _iso_or_none(payload.get("endDate"))
    event = Event(
        community_id=community_id,
        creator_id=user.id,
        title=clean_str(payload.get("title")) or "",
        description=clean_str(payload.get("description")),
        date=_iso_or_none(payload.get("date")),
        end_date=end_date,
        is_multi_day=bool(payload.get("isMultiDay")) or bool(end_date),
        time=clean_str(payload.get("time")),
        location=clean_str(payload.get("location")),
        image=clean_str(payload.get("image")),
        event_type=clean_str(payload.get("eventType")) or "offline",
        max_capacity=_parse_capacity(payload.get("maxCapacity")),
        status="active",
        tags=[str(t).strip() for t in (payload.get("tags") or []) if str(t).strip()],
        interested=[],
        created_at=now,
        updated_at=now,
    )
    s.add(event)
    s.flush()
    record_event(
        s,
        actor=user,
        action="event.create",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"title": event.title, "community_id": community_id},
    )
    return event


_UPDATABLE = {
    "title": "title",
    "description": "description",
    "time": "time",
    "location": "location",
    "image": "image",
    "eventType": "event_type",
    "status": "status",
}


def update_event(s: "Session", event: Event, payload: dict, user: "User") -> Event:
    changes: dict[str, Any] = {}
    for key, attr in _UPDATABLE.items():
        if key not in payload:
            continue
        new = clean_str(payload.get(key))
        if attr in ("title", "event_type", "status") and not new:
            continue
        if new != getattr(event, attr):
            changes[attr] = {"old": getattr(event, attr), "new": new}
            setattr(event, attr, new)

    for key, attr in (("date", "date"), ("endDate", "end_date")):
        if key in payload:
            new = _iso_or_none(payload.get(key))
            if new != getattr(event, attr):
                changes[attr] = {"old": getattr(event, attr), "new": new}
                setattr(event, attr, new)
    if "isMultiDay" in payload:
        event.is_multi_day = bool(payload.get("isMultiDay"))
    if "maxCapacity" in payload:
        event.max_capacity = _parse_capacity(payload.get("maxCapacity"))
    if "tags" in payload:
        event.tags = [str(t).strip() for t in (payload.get("tags") or []) if str(t).strip()]

    event.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="event.edit",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"changes": changes},
    )
    return event


def delete_event(s: "Session", event: Event, user: "User | None" = None) -> None:
    """Delete an event and everything hanging off it (forms, responses, registrations)."""
    from app.ctc.modules.forms.models import Form, FormResponse

    s.query(EventRegistration).filter(EventRegistration.event_id == event.id).delete(synchronize_session=False)
    s.query(FormResponse).filter(FormResponse.event_id == event.id).delete(synchronize_session=False)
    s.query(Form).filter(Form.event_id == event.id).delete(synchronize_session=False)
    s.query(CommunityUpdate).filter(CommunityUpdate.event_id == event.id).update(
        {CommunityUpdate.event_id: None}, synchronize_session=False
    )
    if user is not None:
        record_event(
            s,
            actor=user,
            action="event.delete",
            entity_type="Event",
            entity_id=str(event.id),
            metadata={"title": event.title},
        )
    s.delete(event)


# ---------- Permissions / relations ----------
def event_permissions(s: "Session", event: Event, user: "User | None") -> dict[str, bool]:
    perms = {
        "isMember": False,
        "isAdmin": False,
        "isCreator": False,
        "canEdit": False,
        "canDelete": False,
        "canCreateForms": False,
        "canCreateUpdates": False,
    }
    if user is None:
        return perms
    membership = s.get(CommunityMembership, (event.community_id, user.id))
    is_admin = bool(membership and membership.is_admin)
    is_member = membership is not None
    is_creator = event.creator_id == user.id
    perms.update(
        {
            "isMember": is_member,
            "isAdmin": is_admin,
            "isCreator": is_creator,
            "canEdit": is_admin or is_creator,
            "canDelete": is_admin or is_creator,
            "canCreateForms": is_admin or is_creator or is_member,
            "canCreateUpdates": is_admin or is_creator,
        }
    )
    return perms


def user_relation(community_id: int, memberships: dict[int, bool], followed: set[int]) -> str:
    if community_id in memberships:
        return "admin" if memberships[community_id] else "member"
    if community_id in followed:
        return "follower"
    return "other"


def registration_counts(s: "Session", event_ids: list[int]) -> dict[int, int]:
    if not event_ids:
        return {}
    rows = (
        s.query(EventRegistration.event_id, func.count())
        .filter(EventRegistration.event_id.in_(event_ids))
        .group_by(EventRegistration.event_id)
        .all()
    )
    return {eid: int(n) for eid, n in rows}


def attendee_ids(s: "Session", event_ids: list[int]) -> dict[int, list[int]]:
    out: dict[int, list[int]] = {eid: [] for eid in event_ids}
    if not event_ids:
        return out
    rows = (
        s.query(EventRegistration.event_id, EventRegistration.user_id)
        .filter(EventRegistration.event_id.in_(event_ids))
        .order_by(EventRegistration.created_at.asc(), EventRegistration.id.asc())
        .all()
    )
    for eid, uid in rows:
        out[eid].append(uid)
    return out


def registered_event_ids(s: "Session", user: "User") -> set[int]:
    return {eid for (eid,) in s.query(EventRegistration.event_id).filter(EventRegistration.user_id == user.id)}


def register_user(
    s: "Session",
    event: Event,
    user: "User",
    *,
    registration_type: str = "direct",
    form_response_id: int | None = None,
    enforce_capacity: bool = True,
) -> EventRegistration | None:
    """Register user for event. Returns None when already registered."""
    existing = (
        s.query(EventRegistration)
        .filter(EventRegistration.event_id == event.id, EventRegistration.user_id == user.id)
        .one_or_none()
    )
    if existing:
        return None
    if enforce_capacity and event.max_capacity:
        count = s.query(func.count(EventRegistration.id)).filter(EventRegistration.event_id == event.id).scalar() or 0
        if count >= event.max_capacity:
            raise EventError("Event is full")
    reg = EventRegistration(
        event_id=event.id,
        user_id=user.id,
        user_name=user.name,
        user_email=user.email,
        registration_type=registration_type,
        form_response_id=form_response_id,
        created_at=datetime.utcnow(),
    )
    s.add(reg)
    s.flush()
    return reg


def toggle_interest(event: Event, user: "User") -> bool:
    """Flip user's interest flag. Returns the new state."""
    current = list(event.interested or [])
    if user.id in current:
        current.remove(user.id)
        event.interested = current
        return False
    current.append(user.id)
    event.interested = current
    return True


# ---------- Queries ----------
def feed_query(s: "Session", user: "User", *, today: str) -> "Query":
    """Events from the user's communities, dated today or later (or undated)."""
    memberships, followed = relation_maps(s, user)
    community_ids = set(memberships) | followed
    q = s.query(Event).filter(or_(Event.date.is_(None), Event.date >= today))
    if community_ids:
        q = q.filter(Event.community_id.in_(sorted(community_ids)))
    return q.order_by(Event.created_at.desc(), Event.id.desc())


def upcoming_events(s: "Session", user: "User", *, today: str, limit: int) -> list[Event]:
    memberships, followed = relation_maps(s, user)
    community_ids = set(memberships) | followed
    registered = registered_event_ids(s, user)

    q = s.query(Event).filter(
        or_(
            Event.date >= today,
            and_(Event.is_multi_day.is_(True), Event.end_date >= today),
        )
    )
    if community_ids:
        scope = [Event.community_id.in_(sorted(community_ids))]
        if registered:
            scope.append(Event.id.in_(sorted(registered)))
        q = q.filter(or_(*scope))
    return q.order_by(Event.date.asc(), Event.time.asc(), Event.id.asc()).limit(limit).all()


# ---------- Serialization ----------
def serialize_event(
    e: Event,
    *,
    registrations: int = 0,
    attendees: list[int] | None = None,
) -> dict[str, Any]:
    return {
        "id": e.id,
        "title": e.title,
        "description": e.description,
        "date": e.date,
        "endDate": e.end_date,
        "isMultiDay": e.is_multi_day,
        "time": e.time,
        "location": e.location,
        "image": e.image,
        "eventType": e.event_type or "offline",
        "capacity": e.max_capacity,
        "status": e.status,
        "tags": list(e.tags or []),
        "attendees": list(attendees or []),
        "interested": list(e.interested or []),
        "registrations": registrations,
        "communityId": e.community_id,
        "community": community_summary(e.community),
        "creatorId": e.creator_id,
        "createdAt": isoformat(e.created_at),
        "updatedAt": isoformat(e.updated_at),
    }
