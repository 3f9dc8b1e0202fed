from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.ctc.db import db_session
from app.ctc.modules.communities.models import Community
from app.ctc.modules.communities.service import is_community_admin, relation_maps
from app.ctc.modules.events.models import Event, EventRegistration
from app.ctc.modules.events.service import (
    EventError,
    attendee_ids,
    create_event,
    delete_event,
    event_permissions,
    feed_query,
    register_user,
    registered_event_ids,
    registration_counts,
    serialize_event,
    today_iso,
    toggle_interest,
    upcoming_events,
    update_event,
    user_relation,
    validate_event_payload,
)
from app.ctc.rbac import current_user, require_login
from app.ctc.utils import pagination_meta, parse_limit, parse_pagination, json_payload

bp = Blueprint("events", __name__)


def _get_event_or_404(event_id: int) -> Event:
    e = db_session().get(Event, event_id)
    if not e:
        abort(404, description="Event not found")
    return e


def _serialize_many(events: list[Event]) -> list[dict]:
    s = db_session()
    ids = [e.id for e in events]
    counts = registration_counts(s, ids)
    attendees = attendee_ids(s, ids)
    return [serialize_event(e, registrations=counts.get(e.id, 0), attendees=attendees.get(e.id)) for e in events]


# ---------- Listing ----------
@bp.get("/api/events")
def events_list():
    s = db_session()
    events = s.query(Event).order_by(Event.created_at.desc(), Event.id.desc()).all()
    return {"events": _serialize_many(events)}


@bp.get("/api/events/all")
def events_all():
    s = db_session()
    events = s.query(Event).order_by(Event.created_at.desc(), Event.id.desc()).all()
    counts = registration_counts(s, [e.id for e in events])
    return [
        {
            "id": e.id,
            "title": e.title,
            "date": e.date,
            "time": e.time,
            "location": e.location,
            "image": e.image,
            "eventType": e.event_type or "offline",
            "registrations": counts.get(e.id, 0),
            "community": {"id": e.community.id, "name": e.community.name, "handle": e.community.handle}
            if e.community
            else None,
        }
        for e in events
    ]


@bp.get("/api/events/feed")
@require_login
def events_feed():
    s = db_session()
    u = current_user()
    page, limit = parse_pagination(default_limit=15)

    q = feed_query(s, u, today=today_iso())
    total = q.count()
    events = q.offset((page - 1) * limit).limit(limit).all()

    memberships, followed = relation_maps(s, u)
    registered = registered_event_ids(s, u)
    items = []
    for item, e in zip(_serialize_many(events), events):
        item["type"] = "event"
        item["userRegistered"] = e.id in registered
        item["userRelation"] = user_relation(e.community_id, memberships, followed)
        items.append(item)
    return {"events": items, "pagination": pagination_meta(page, limit, total)}


@bp.get("/api/events/upcoming")
@require_login
def events_upcoming():
    s = db_session()
    u = current_user()
    limit = parse_limit(default=4)
    events = upcoming_events(s, u, today=today_iso(), limit=limit)
    registered = registered_event_ids(s, u)
    items = []
    for item in _serialize_many(events):
        item["registrationCount"] = item["registrations"]
        item["userRegistered"] = item["id"] in registered
        items.append(item)
    return {"events": items}


@bp.get("/api/user/events")
@require_login
def user_events():
    s = db_session()
    u = current_user()
    registered = registered_event_ids(s, u)
    q = s.query(Event).filter((Event.creator_id == u.id) | Event.id.in_(sorted(registered) or [-1]))
    events = q.order_by(Event.date.desc(), Event.id.desc()).all()
    today = today_iso()
    items = []
    for item, e in zip(_serialize_many(events), events):
        last_day = e.end_date if e.is_multi_day and e.end_date else e.date
        item["status"] = "upcoming" if (last_day is None or last_day >= today) else "past"
        item["userRegistered"] = e.id in registered
        item["isCreator"] = e.creator_id == u.id
        items.append(item)
    return {"events": items}


# ---------- CRUD ----------
@bp.post("/api/events")
@require_login
def events_create():
    s = db_session()
    u = current_user()
    payload = json_payload()

    errors = validate_event_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    try:
        community_id = int(payload["communityId"])
    except (TypeError, ValueError):
        abort(400, description="communityId must be an integer")
    if not s.get(Community, community_id):
        abort(404, description="Community not found")
    if not is_community_admin(s, community_id, u):
        abort(403, description="Only community admins can create events")

    event = create_event(s, community_id, payload, u)
    s.commit()
    return {"event": serialize_event(event)}, 201


@bp.get("/api/events/<int:event_id>")
def event_detail(event_id: int):
    s = db_session()
    e = _get_event_or_404(event_id)
    item = _serialize_many([e])[0]
    item["userPermissions"] = event_permissions(s, e, getattr(g, "current_user", None))
    return {"event": item}


@bp.patch("/api/events/<int:event_id>")
@require_login
def event_update(event_id: int):
    s = db_session()
    u = current_user()
    e = _get_event_or_404(event_id)
    if not event_permissions(s, e, u)["canEdit"]:
        abort(403, description="You do not have permission to edit this event")
    payload = json_payload()
    errors = validate_event_payload(payload, partial=True)
    if errors:
        abort(400, description=" ".join(errors))
    update_event(s, e, payload, u)
    s.commit()
    return {"event": _serialize_many([e])[0]}


@bp.delete("/api/events/<int:event_id>")
@require_login
def event_delete(event_id: int):
    s = db_session()
    u = current_user()
    e = _get_event_or_404(event_id)
    if not event_permissions(s, e, u)["canDelete"]:
        abort(403, description="You do not have permission to delete this event")
    delete_event(s, e, u)
    s.commit()
    return {"success": True, "message": "Event deleted successfully"}


# ---------- Attendance ----------
@bp.route("/api/events/<int:event_id>/register", methods=["POST", "DELETE"])
@require_login
def event_register(event_id: int):
    s = db_session()
    u = current_user()
    e = _get_event_or_404(event_id)

    if request.method == "DELETE":
        deleted = (
            s.query(EventRegistration)
            .filter(EventRegistration.event_id == e.id, EventRegistration.user_id == u.id)
            .delete(synchronize_session=False)
        )
        if not deleted:
            abort(400, description="You are not registered for this event")
        s.commit()
        return {"success": True, "registered": False}

    try:
        reg = register_user(s, e, u, registration_type="direct")
    except EventError as err:
        abort(400, description=str(err))
    if reg is None:
        abort(400, description="You are already registered for this event")
    s.commit()
    return {"success": True, "registered": True, "registrationId": reg.id}, 201


@bp.post("/api/events/<int:event_id>/interest")
@require_login
def event_interest(event_id: int):
    s = db_session()
    e = _get_event_or_404(event_id)
    interested = toggle_interest(e, current_user())
    s.commit()
    return {"success": True, "interested": interested, "interestedCount": len(e.interested or [])}
