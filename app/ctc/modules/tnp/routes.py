from __future__ import annotations

from flask import Blueprint, abort

from app.ctc.audit import record_event
from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.modules.tnp.models import TnpPost
from app.ctc.modules.tnp.service import (
    announce_tnp_post,
    apply_tnp_payload,
    create_tnp_post,
    sample_tnp_payloads,
    serialize_tnp_post,
    validate_tnp_payload,
)
from app.ctc.rbac import current_user, require_permission
from app.ctc.utils import json_payload

bp = Blueprint("tnp", __name__)


def _get_post_or_404(post_id: int) -> TnpPost:
    post = db_session().get(TnpPost, post_id)
    if not post:
        abort(404, description="TNP post not found")
    return post


@bp.get("/api/tnp")
def tnp_list():
    s = db_session()
    posts = s.query(TnpPost).order_by(TnpPost.created_at.desc(), TnpPost.id.desc()).all()
    author_ids = {p.author_id for p in posts if p.author_id}
    authors = {u.id: u for u in s.query(User).filter(User.id.in_(sorted(author_ids)))} if author_ids else {}
    return {"success": True, "data": [serialize_tnp_post(p, authors.get(p.author_id)) for p in posts]}


@bp.post("/api/tnp")
@require_permission("tnp.manage")
def tnp_create():
    s = db_session()
    u = current_user()
    payload = json_payload()
    errors = validate_tnp_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    post = create_tnp_post(s, payload, u)
    record_event(s, actor=u, action="tnp.create", entity_type="TnpPost", entity_id=str(post.id))
    notified = announce_tnp_post(s, post, sent_by=u.email)
    s.commit()
    return {"success": True, "data": serialize_tnp_post(post, u), "notified": notified}, 201


@bp.get("/api/tnp/<int:post_id>")
def tnp_detail(post_id: int):
    s = db_session()
    post = _get_post_or_404(post_id)
    author = s.get(User, post.author_id) if post.author_id else None
    return {"success": True, "data": serialize_tnp_post(post, author)}


@bp.put("/api/tnp/<int:post_id>")
@require_permission("tnp.manage")
def tnp_update(post_id: int):
    s = db_session()
    u = current_user()
    post = _get_post_or_404(post_id)
    payload = json_payload()
    errors = validate_tnp_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    apply_tnp_payload(post, payload)
    record_event(s, actor=u, action="tnp.edit", entity_type="TnpPost", entity_id=str(post.id))
    s.commit()
    author = s.get(User, post.author_id) if post.author_id else None
    return {"success": True, "data": serialize_tnp_post(post, author)}


@bp.delete("/api/tnp/<int:post_id>")
@require_permission("tnp.manage")
def tnp_delete(post_id: int):
    s = db_session()
    u = current_user()
    post = _get_post_or_404(post_id)
    record_event(s, actor=u, action="tnp.delete", entity_type="TnpPost", entity_id=str(post.id))
    s.delete(post)
    s.commit()
    return {"success": True, "message": "TNP post deleted successfully"}


@bp.post("/api/tnp/seed")
@require_permission("tnp.manage")
def tnp_seed():
    s = db_session()
    u = current_user()
    posts = [create_tnp_post(s, payload, u) for payload in sample_tnp_payloads()]
    record_event(s, actor=u, action="tnp.seed", entity_type="TnpPost", metadata={"count": len(posts)})
    s.commit()
    return {"success": True, "message": f"Seeded {len(posts)} TNP posts", "count": len(posts)}, 201
