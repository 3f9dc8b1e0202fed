from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.ctc.audit import record_event
from app.ctc.modules.communities.models import Community, CommunityFollow, CommunityMembership, CommunityUpdate
from app.ctc.utils import clean_str, isoformat

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ctc.models import User


HANDLE_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{1,62}$")


class CommunityError(ValueError):
    pass


def normalize_handle(raw: Any) -> str:
    return (clean_str(raw) or "").lstrip("@").lower()


def validate_community_payload(payload: dict) -> list[str]:
    errors = []
    if not clean_str(payload.get("name")):
        errors.append("Name is required.")
    handle = normalize_handle(payload.get("handle"))
    if not handle:
        errors.append("Handle is required.")
    elif not HANDLE_RE.match(handle):
        errors.append("Handle may only contain lowercase letters, digits, '-' and '_' (2-63 chars).")
    return errors


def create_community(s: "Session", payload: dict, user: "User") -> Community:
    """Create a community; the creator becomes its first admin member."""
    handle = normalize_handle(payload.get("handle"))
    if s.query(Community.id).filter(Community.handle == handle).first():
        raise CommunityError("Community handle already exists")

    now = datetime.utcnow()
    community = Community(
        name=clean_str(payload.get("name")) or "",
        handle=handle,
        description=clean_str(payload.get("description")),
        avatar=clean_str(payload.get("avatar")),
        banner=clean_str(payload.get("banner")),
        website=clean_str(payload.get("website")),
        location=clean_str(payload.get("location")),
        status="active",
        is_verified=False,
        followers_count=0,
        creator_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(community)
    s.flush()
    s.add(CommunityMembership(community_id=community.id, user_id=user.id, is_admin=True, created_at=now))
    s.flush()
    s.refresh(community)

    record_event(
        s,
        actor=user,
        action="community.create",
        entity_type="Community",
        entity_id=str(community.id),
        metadata={"handle": handle},
    )
    return community


def member_ids(community: Community) -> list[int]:
    return [m.user_id for m in community.memberships]


def admin_ids(community: Community) -> list[int]:
    return [m.user_id for m in community.memberships if m.is_admin]


def get_membership(s: "Session", community_id: int, user_id: int) -> CommunityMembership | None:
    return s.get(CommunityMembership, (community_id, user_id))


def is_community_admin(s: "Session", community_id: int, user: "User | None") -> bool:
    if user is None:
        return False
    m = get_membership(s, community_id, user.id)
    return bool(m and m.is_admin)


def follow(s: "Session", community: Community, user: "User") -> bool:
    """Returns True when a new follow row was created."""
    if s.get(CommunityFollow, (community.id, user.id)):
        return False
    s.add(CommunityFollow(community_id=community.id, user_id=user.id, created_at=datetime.utcnow()))
    community.followers_count = (community.followers_count or 0) + 1
    return True


def unfollow(s: "Session", community: Community, user: "User") -> bool:
    row = s.get(CommunityFollow, (community.id, user.id))
    if not row:
        return False
    s.delete(row)
    community.followers_count = max((community.followers_count or 0) - 1, 0)
    return True


def join(s: "Session", community: Community, user: "User") -> bool:
    if get_membership(s, community.id, user.id):
        return False
    s.add(CommunityMembership(community_id=community.id, user_id=user.id, is_admin=False, created_at=datetime.utcnow()))
    return True


def leave(s: "Session", community: Community, user: "User") -> bool:
    m = get_membership(s, community.id, user.id)
    if not m:
        return False
    if m.is_admin and len(admin_ids(community)) <= 1:
        raise CommunityError("The last admin cannot leave the community")
    s.delete(m)
    return True


def relation_maps(s: "Session", user: "User | None") -> tuple[dict[int, bool], set[int]]:
    """({community_id: is_admin} for memberships, {followed community ids}) for one user."""
    if user is None:
        return {}, set()
    memberships = {
        cid: bool(is_admin)
        for cid, is_admin in s.query(CommunityMembership.community_id, CommunityMembership.is_admin).filter(
            CommunityMembership.user_id == user.id
        )
    }
    followed = {
        cid for (cid,) in s.query(CommunityFollow.community_id).filter(CommunityFollow.user_id == user.id)
    }
    return memberships, followed


def member_counts(s: "Session", community_ids: list[int]) -> dict[int, int]:
    if not community_ids:
        return {}
    rows = (
        s.query(CommunityMembership.community_id, func.count())
        .filter(CommunityMembership.community_id.in_(community_ids))
        .group_by(CommunityMembership.community_id)
        .all()
    )
    return {cid: int(n) for cid, n in rows}


def trending_communities(s: "Session", limit: int = 10) -> list[tuple[Community, int]]:
    """Active communities ranked by followers, then members, then recency."""
    communities = s.query(Community).filter(Community.status == "active").all()
    counts = member_counts(s, [c.id for c in communities])
    ranked = sorted(
        communities,
        key=lambda c: (c.followers_count or 0, counts.get(c.id, 0), c.created_at),
        reverse=True,
    )
    return [(c, counts.get(c.id, 0)) for c in ranked[:limit]]


def create_update(
    s: "Session", community: Community, payload: dict, user: "User", *, event_id: int | None = None
) -> CommunityUpdate:
    update = CommunityUpdate(
        community_id=community.id,
        event_id=event_id,
        author_id=user.id,
        title=clean_str(payload.get("title")) or "",
        content=clean_str(payload.get("content")) or "",
        created_at=datetime.utcnow(),
    )
    s.add(update)
    s.flush()
    return update


def community_summary(c: Community | None) -> dict[str, Any] | None:
    if c is None:
        return None
    return {"id": c.id, "name": c.name, "handle": c.handle, "avatar": c.avatar}


def serialize_community(c: Community) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "handle": c.handle,
        "description": c.description,
        "avatar": c.avatar,
        "banner": c.banner,
        "website": c.website,
        "location": c.location,
        "members": member_ids(c),
        "admins": admin_ids(c),
        "status": c.status or "active",
        "isVerified": c.is_verified,
        "followersCount": c.followers_count or 0,
        "creatorId": c.creator_id,
        "createdAt": isoformat(c.created_at),
    }


def serialize_update(u: CommunityUpdate) -> dict[str, Any]:
    return {
        "id": u.id,
        "communityId": u.community_id,
        "eventId": u.event_id,
        "authorId": u.author_id,
        "title": u.title,
        "content": u.content,
        "createdAt": isoformat(u.created_at),
        "type": "update",
    }
