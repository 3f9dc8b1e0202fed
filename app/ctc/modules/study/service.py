from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.ctc.modules.study.models import StudyPost
from app.ctc.utils import clean_str, isoformat

if TYPE_CHECKING:
    from app.ctc.models import User


STUDY_COMMUNITY = {"name": "Study Resources", "handle": "study-resources", "avatar": "/images/study-avatar.png"}
DEFAULT_AUTHOR = {"name": "Study Team", "email": "study@college.edu"}

_TEXT_FIELDS = {
    "title": "title",
    "content": "content",
    "type": "type",
    "subject": "subject",
    "semester": "semester",
    "difficulty": "difficulty",
    "estimatedTime": "estimated_time",
    "prerequisites": "prerequisites",
    "learningOutcomes": "learning_outcomes",
}


def validate_study_payload(payload: dict) -> list[str]:
    errors = []
    for key in ("title", "content", "type"):
        if not clean_str(payload.get(key)):
            errors.append(f"{key.capitalize()} is required.")
    attachments = payload.get("attachments")
    if attachments is not None and not isinstance(attachments, list):
        errors.append("attachments must be a list.")
    return errors


def _tags_to_str(raw: Any) -> str | None:
    if isinstance(raw, list):
        raw = ",".join(str(t) for t in raw)
    text = clean_str(raw)
    if not text:
        return None
    return ", ".join(t.strip() for t in text.split(",") if t.strip()) or None


def split_tags(post: StudyPost) -> list[str]:
    tags = [t.strip() for t in (post.tags or "").split(",") if t.strip()]
    return tags or ["study", post.type]


def apply_study_payload(post: StudyPost, payload: dict) -> StudyPost:
    for key, attr in _TEXT_FIELDS.items():
        if key in payload:
            setattr(post, attr, clean_str(payload.get(key)))
    if "tags" in payload:
        post.tags = _tags_to_str(payload.get("tags"))
    if "attachments" in payload:
        post.attachments = list(payload.get("attachments") or [])
    post.updated_at = datetime.utcnow()
    return post


def new_study_post(payload: dict, user: "User") -> StudyPost:
    now = datetime.utcnow()
    post = StudyPost(author_id=user.id, created_at=now, attachments=[])
    return apply_study_payload(post, payload)


def cover_image(post: StudyPost) -> str | None:
    for att in post.attachments or []:
        if isinstance(att, dict) and str(att.get("type") or "").startswith("image"):
            return att.get("url")
    return None


def serialize_study_post(post: StudyPost, author: "User | None" = None) -> dict[str, Any]:
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "type": post.type,
        "subject": post.subject,
        "semester": post.semester,
        "difficulty": post.difficulty,
        "estimatedTime": post.estimated_time,
        "prerequisites": post.prerequisites,
        "learningOutcomes": post.learning_outcomes,
        "attachments": list(post.attachments or []),
        "tags": split_tags(post),
        "image": cover_image(post),
        "author": {"name": author.name or DEFAULT_AUTHOR["name"], "email": author.email} if author else dict(DEFAULT_AUTHOR),
        "community": dict(STUDY_COMMUNITY),
        "createdAt": isoformat(post.created_at),
        "updatedAt": isoformat(post.updated_at),
    }
