from __future__ import annotations

from flask import Blueprint, abort

from app.ctc.audit import record_event
from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.modules.study.models import StudyPost
from app.ctc.modules.study.service import (
    apply_study_payload,
    new_study_post,
    serialize_study_post,
    validate_study_payload,
)
from app.ctc.rbac import current_user, require_permission
from app.ctc.utils import json_payload

bp = Blueprint("study", __name__)


def _get_post_or_404(post_id: int) -> StudyPost:
    post = db_session().get(StudyPost, post_id)
    if not post:
        abort(404, description="Study post not found")
    return post


@bp.get("/api/study")
def study_list():
    s = db_session()
    posts = s.query(StudyPost).order_by(StudyPost.created_at.desc(), StudyPost.id.desc()).all()
    author_ids = {p.author_id for p in posts if p.author_id}
    authors = {u.id: u for u in s.query(User).filter(User.id.in_(sorted(author_ids)))} if author_ids else {}
    return {"success": True, "data": [serialize_study_post(p, authors.get(p.author_id)) for p in posts]}


@bp.post("/api/study")
@require_permission("study.manage")
def study_create():
    s = db_session()
    u = current_user()
    payload = json_payload()
    errors = validate_study_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    post = new_study_post(payload, u)
    s.add(post)
    s.flush()
    record_event(s, actor=u, action="study.create", entity_type="StudyPost", entity_id=str(post.id))
    s.commit()
    return {"success": True, "data": serialize_study_post(post, u)}, 201


@bp.get("/api/study/<int:post_id>")
def study_detail(post_id: int):
    s = db_session()
    post = _get_post_or_404(post_id)
    author = s.get(User, post.author_id) if post.author_id else None
    return {"success": True, "data": serialize_study_post(post, author)}


@bp.put("/api/study/<int:post_id>")
@require_permission("study.manage")
def study_update(post_id: int):
    s = db_session()
    u = current_user()
    post = _get_post_or_404(post_id)
    payload = json_payload()
    errors = validate_study_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    apply_study_payload(post, payload)
    record_event(s, actor=u, action="study.edit", entity_type="StudyPost", entity_id=str(post.id))
    s.commit()
    author = s.get(User, post.author_id) if post.author_id else None
    return {"success": True, "data": serialize_study_post(post, author)}


@bp.delete("/api/study/<int:post_id>")
@require_permission("study.manage")
def study_delete(post_id: int):
    s = db_session()
    u = current_user()
    post = _get_post_or_404(post_id)
    record_event(s, actor=u, action="study.delete", entity_type="StudyPost", entity_id=str(post.id))
    s.delete(post)
    s.commit()
    return {"success": True, "message": "Study post deleted successfully"}
