from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.ctc.db import db_session
from app.ctc.modules.communities.models import Community, CommunityMembership, CommunityUpdate
from app.ctc.modules.communities.service import (
    CommunityError,
    create_community,
    create_update,
    follow,
    is_community_admin,
    join,
    leave,
    member_counts,
    relation_maps,
    serialize_community,
    serialize_update,
    trending_communities,
    unfollow,
    validate_community_payload,
)
from app.ctc.modules.events.models import Event
from app.ctc.rbac import current_user, require_login
from app.ctc.utils import clean_str, json_payload

bp = Blueprint("communities", __name__)


def _get_community_or_404(community_id: int) -> Community:
    c = db_session().get(Community, community_id)
    if not c:
        abort(404, description="Community not found")
    return c


@bp.get("/api/communities")
def communities_list():
    s = db_session()
    communities = s.query(Community).order_by(Community.created_at.desc(), Community.id.desc()).all()
    return {"communities": [serialize_community(c) for c in communities]}


@bp.post("/api/communities")
@require_login
def communities_create():
    s = db_session()
    u = current_user()
    payload = json_payload()

    errors = validate_community_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    try:
        community = create_community(s, payload, u)
    except CommunityError as e:
        abort(400, description=str(e))
    s.commit()
    return {"community": serialize_community(community)}, 201


@bp.get("/api/communities/trending")
def communities_trending():
    s = db_session()
    memberships, followed = relation_maps(s, getattr(g, "current_user", None))
    data = []
    for c, members_count in trending_communities(s, limit=10):
        if c.id in memberships:
            relation = "admin" if memberships[c.id] else "member"
        elif c.id in followed:
            relation = "following"
        else:
            relation = None
        item = serialize_community(c)
        item["membersCount"] = members_count
        item["userRelation"] = relation
        data.append(item)
    return {"success": True, "data": data}


@bp.get("/api/communities/<int:community_id>")
def community_detail(community_id: int):
    return {"community": serialize_community(_get_community_or_404(community_id))}


@bp.route("/api/communities/<int:community_id>/follow", methods=["POST", "DELETE"])
@require_login
def community_follow(community_id: int):
    s = db_session()
    c = _get_community_or_404(community_id)
    u = current_user()
    changed = follow(s, c, u) if request.method == "POST" else unfollow(s, c, u)
    s.commit()
    return {"success": True, "changed": changed, "following": request.method == "POST", "followersCount": c.followers_count}


@bp.route("/api/communities/<int:community_id>/join", methods=["POST", "DELETE"])
@require_login
def community_join(community_id: int):
    s = db_session()
    c = _get_community_or_404(community_id)
    u = current_user()
    try:
        changed = join(s, c, u) if request.method == "POST" else leave(s, c, u)
    except CommunityError as e:
        abort(400, description=str(e))
    s.commit()
    s.refresh(c)
    return {"success": True, "changed": changed, "community": serialize_community(c)}


@bp.get("/api/communities/<int:community_id>/updates")
def community_updates_list(community_id: int):
    s = db_session()
    _get_community_or_404(community_id)
    updates = (
        s.query(CommunityUpdate)
        .filter(CommunityUpdate.community_id == community_id)
        .order_by(CommunityUpdate.created_at.desc(), CommunityUpdate.id.desc())
        .all()
    )
    return {"updates": [serialize_update(u) for u in updates]}


@bp.post("/api/communities/<int:community_id>/updates")
@require_login
def community_updates_create(community_id: int):
    s = db_session()
    c = _get_community_or_404(community_id)
    u = current_user()
    if not is_community_admin(s, c.id, u):
        abort(403, description="Only community admins can post updates")
    payload = json_payload()
    if not clean_str(payload.get("title")) or not clean_str(payload.get("content")):
        abort(400, description="Title and content are required")
    event_id = _linked_event_id(s, c, payload.get("eventId"))
    update = create_update(s, c, payload, u, event_id=event_id)
    s.commit()
    return {"update": serialize_update(update)}, 201


def _linked_event_id(s, c: Community, raw) -> int | None:
    """An update may point at one of the community's own events."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        abort(400, description="Invalid eventId")
    try:
        event_id = int(raw)
    except (TypeError, ValueError):
        abort(400, description="Invalid eventId")
    event = s.get(Event, event_id)
    if not event or event.community_id != c.id:
        abort(400, description="Event does not belong to this community")
    return event_id


@bp.get("/api/user/communities")
@require_login
def user_communities():
    s = db_session()
    u = current_user()
    rows = (
        s.query(Community, CommunityMembership.is_admin)
        .join(CommunityMembership, CommunityMembership.community_id == Community.id)
        .filter(CommunityMembership.user_id == u.id)
        .order_by(CommunityMembership.is_admin.desc(), Community.created_at.desc())
        .all()
    )
    counts = member_counts(s, [c.id for c, _ in rows])
    communities = []
    for c, is_admin in rows:
        item = serialize_community(c)
        item["userRole"] = "admin" if is_admin else "member"
        item["membersCount"] = counts.get(c.id, 0)
        communities.append(item)
    return {"communities": communities}
