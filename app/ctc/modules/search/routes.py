from __future__ import annotations

from flask import Blueprint, abort, request
from sqlalchemy import or_

from app.ctc.db import db_session
from app.ctc.modules.communities.models import Community
from app.ctc.modules.communities.service import community_summary
from app.ctc.modules.events.models import Event
from app.ctc.modules.study.models import StudyPost
from app.ctc.modules.tnp.models import TnpPost
from app.ctc.rbac import require_login
from app.ctc.utils import clean_str, isoformat, like_pattern

bp = Blueprint("search", __name__)

RESULTS_PER_KIND = 5


def _matches(like: str, *columns):
    return or_(*(c.ilike(like, escape="\\") for c in columns))


@bp.get("/api/search")
@require_login
def search():
    q = clean_str(request.args.get("q"))
    if not q:
        abort(400, description="Query parameter is required")

    s = db_session()
    like = like_pattern(q)

    events = (
        s.query(Event)
        .filter(_matches(like, Event.title, Event.description, Event.location))
        .order_by(Event.created_at.desc())
        .limit(RESULTS_PER_KIND)
        .all()
    )
    communities = (
        s.query(Community)
        .filter(or_(Community.status == "active", Community.status.is_(None)))
        .filter(_matches(like, Community.name, Community.handle, Community.description))
        .order_by(Community.followers_count.desc(), Community.created_at.desc())
        .limit(RESULTS_PER_KIND)
        .all()
    )
    tnp = (
        s.query(TnpPost)
        .filter(_matches(like, TnpPost.title, TnpPost.content, TnpPost.company, TnpPost.location))
        .order_by(TnpPost.created_at.desc())
        .limit(RESULTS_PER_KIND)
        .all()
    )
    study = (
        s.query(StudyPost)
        .filter(_matches(like, StudyPost.title, StudyPost.content, StudyPost.subject, StudyPost.tags))
        .order_by(StudyPost.created_at.desc())
        .limit(RESULTS_PER_KIND)
        .all()
    )

    return {
        "query": q,
        "results": {
            "events": [
                {
                    "id": e.id,
                    "title": e.title,
                    "date": e.date,
                    "location": e.location,
                    "image": e.image,
                    "community": community_summary(e.community),
                    "type": "event",
                }
                for e in events
            ],
            "communities": [
                {
                    "id": c.id,
                    "name": c.name,
                    "handle": c.handle,
                    "avatar": c.avatar,
                    "description": c.description,
                    "type": "community",
                }
                for c in communities
            ],
            "tnp": [
                {
                    "id": p.id,
                    "title": p.title,
                    "company": p.company,
                    "deadline": isoformat(p.deadline),
                    "type": "tnp",
                }
                for p in tnp
            ],
            "study": [
                {"id": p.id, "title": p.title, "subject": p.subject, "type": "study"}
                for p in study
            ],
        },
    }
