from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.ctc.constants import ROLE_STUDENT
from app.ctc.modules.notifications.service import notify_quietly
from app.ctc.modules.tnp.models import TnpPost
from app.ctc.utils import clean_str, isoformat, parse_iso_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ctc.models import User


TNP_COMMUNITY = {"name": "Training & Placement Cell", "handle": "tnp-cell", "avatar": "/images/tnp-avatar.png"}

_TEXT_FIELDS = {
    "title": "title",
    "content": "content",
    "type": "type",
    "company": "company",
    "requirements": "requirements",
    "applicationLink": "application_link",
    "salary": "salary",
    "location": "location",
}


def validate_tnp_payload(payload: dict) -> list[str]:
    errors = []
    for key in ("title", "content", "type"):
        if not clean_str(payload.get(key)):
            errors.append(f"{key.capitalize()} is required.")
    if clean_str(payload.get("deadline")):
        try:
            parse_iso_datetime(payload.get("deadline"))
        except ValueError:
            errors.append("deadline must be an ISO date or datetime.")
    attachments = payload.get("attachments")
    if attachments is not None and not isinstance(attachments, list):
        errors.append("attachments must be a list.")
    return errors


def apply_tnp_payload(post: TnpPost, payload: dict) -> TnpPost:
    for key, attr in _TEXT_FIELDS.items():
        if key in payload:
            setattr(post, attr, clean_str(payload.get(key)))
    if "deadline" in payload:
        post.deadline = parse_iso_datetime(payload.get("deadline"))
    if "attachments" in payload:
        post.attachments = list(payload.get("attachments") or [])
    post.tags = [post.type, "tnp"]
    post.updated_at = datetime.utcnow()
    return post


def create_tnp_post(s: "Session", payload: dict, user: "User | None") -> TnpPost:
    now = datetime.utcnow()
    post = TnpPost(author_id=user.id if user else None, created_at=now, attachments=[])
    apply_tnp_payload(post, payload)
    s.add(post)
    s.flush()
    return post


def announce_tnp_post(s: "Session", post: TnpPost, sent_by: str) -> int:
    """Tell every CTC student about a new posting. Best-effort."""
    kind = {"job": "Job", "internship": "Internship"}.get((post.type or "").lower(), "TNP")
    company = f" at {post.company}" if post.company else ""
    return notify_quietly(
        s,
        role=ROLE_STUDENT,
        title=f"New {kind} Opportunity",
        message=f"{post.title}{company}",
        type="info",
        action_url=f"/tnp/{post.id}",
        action_text="View Details",
        sent_by=sent_by,
    )


def serialize_tnp_post(post: TnpPost, author: "User | None" = None) -> dict[str, Any]:
    image = None
    for att in post.attachments or []:
        if isinstance(att, dict) and str(att.get("type") or "").startswith("image"):
            image = att.get("url")
            break
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "type": post.type,
        "company": post.company,
        "deadline": isoformat(post.deadline),
        "requirements": post.requirements,
        "applicationLink": post.application_link,
        "salary": post.salary,
        "location": post.location,
        "attachments": list(post.attachments or []),
        "tags": list(post.tags or [post.type, "tnp"]),
        "image": image,
        "author": {"name": author.name, "email": author.email} if author else None,
        "community": dict(TNP_COMMUNITY),
        "createdAt": isoformat(post.created_at),
        "updatedAt": isoformat(post.updated_at),
    }


def sample_tnp_payloads(now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or datetime.utcnow()
    return [
        {
            "title": "Software Engineer Intern",
            "content": "Summer internship on the platform team. Work with Python services and cloud tooling.",
            "type": "internship",
            "company": "TechCorp",
            "deadline": (now + timedelta(days=30)).isoformat(),
            "requirements": "B.Tech CSE/IT, 3rd year; strong data structures; Python or Java",
            "applicationLink": "https://careers.techcorp.example/internships",
            "salary": "INR 40,000/month",
            "location": "Bengaluru",
        },
        {
            "title": "Graduate Engineer Trainee",
            "content": "Full-time role for the 2026 batch across backend and data engineering tracks.",
            "type": "job",
            "company": "DataWorks",
            "deadline": (now + timedelta(days=21)).isoformat(),
            "requirements": "B.Tech any branch, CGPA 7+, no active backlogs",
            "applicationLink": "https://dataworks.example/careers",
            "salary": "INR 8 LPA",
            "location": "Pune",
        },
        {
            "title": "Campus Placement Drive: Cloud Solutions",
            "content": "On-campus drive with aptitude test, technical interview and HR round.",
            "type": "placement",
            "company": "Nimbus Cloud",
            "deadline": (now + timedelta(days=10)).isoformat(),
            "requirements": "Final year students, all branches",
            "applicationLink": "https://nimbus.example/drive",
            "salary": "INR 6.5 LPA",
            "location": "Hyderabad",
        },
    ]
