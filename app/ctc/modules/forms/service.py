from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.ctc.constants import CHOICE_FIELD_TYPES, DEFAULT_FORM_TITLE, FORM_FIELD_TYPES, UNKNOWN_EVENT
from app.ctc.modules.events.service import register_user
from app.ctc.modules.forms.models import Form, FormResponse
from app.ctc.modules.notifications.service import notify_quietly
from app.ctc.utils import as_bool, clean_str, isoformat

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ctc.models import User
    from app.ctc.modules.events.models import Event

logger = logging.getLogger(__name__)


class FormSubmissionError(ValueError):
    pass


def validate_fields(fields: Any) -> list[str]:
    """Validate a form's field definitions. Returns list of errors."""
    if not isinstance(fields, list) or not fields:
        return ["Fields must be a non-empty list."]
    errors = []
    seen: set[str] = set()
    for i, field in enumerate(fields, start=1):
        if not isinstance(field, dict):
            errors.append(f"Field {i} must be an object.")
            continue
        fid = clean_str(field.get("id"))
        if not fid:
            errors.append(f"Field {i} is missing an id.")
        elif fid in seen:
            errors.append(f"Duplicate field id: {fid}.")
        else:
            seen.add(fid)
        if not clean_str(field.get("label")):
            errors.append(f"Field {i} is missing a label.")
        ftype = clean_str(field.get("type"))
        if ftype not in FORM_FIELD_TYPES:
            errors.append(f"Field {i} has an invalid type: {ftype}.")
        elif ftype in CHOICE_FIELD_TYPES:
            options = field.get("options")
            if not isinstance(options, list) or not options:
                errors.append(f"Field {i} ({ftype}) requires options.")
    return errors


def validate_form_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    if not partial or "fields" in payload:
        errors.extend(validate_fields(payload.get("fields")))
    return errors


def _normalize_field(field: dict) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": clean_str(field.get("id")),
        "label": clean_str(field.get("label")),
        "type": clean_str(field.get("type")),
        "required": as_bool(field.get("required")),
    }
    for key in ("options", "fileTypes", "maxFileSize", "placeholder"):
        if field.get(key) is not None:
            out[key] = field[key]
    return out


def create_form(s: "Session", event: "Event", payload: dict, user: "User") -> Form:
    now = datetime.utcnow()
    form = Form(
        event_id=event.id,
        creator_id=user.id,
        title=clean_str(payload.get("title")) or DEFAULT_FORM_TITLE,
        description=clean_str(payload.get("description")),
        fields=[_normalize_field(f) for f in payload.get("fields") or []],
        is_rsvp_form=as_bool(payload.get("isRSVPForm")),
        created_at=now,
        updated_at=now,
    )
    s.add(form)
    s.flush()
    return form


def update_form(form: Form, payload: dict) -> Form:
    if "title" in payload:
        form.title = clean_str(payload.get("title")) or form.title
    if "description" in payload:
        form.description = clean_str(payload.get("description"))
    if "fields" in payload:
        form.fields = [_normalize_field(f) for f in payload.get("fields") or []]
    if "isRSVPForm" in payload:
        form.is_rsvp_form = as_bool(payload.get("isRSVPForm"))
    form.updated_at = datetime.utcnow()
    return form


def delete_form(s: "Session", form: Form) -> int:
    """Delete responses first, then the form. Returns number of responses removed."""
    from app.ctc.modules.events.models import EventRegistration

    response_ids = [rid for (rid,) in s.query(FormResponse.id).filter(FormResponse.form_id == form.id)]
    if response_ids:
        s.query(EventRegistration).filter(EventRegistration.form_response_id.in_(response_ids)).update(
            {EventRegistration.form_response_id: None}, synchronize_session=False
        )
    removed = s.query(FormResponse).filter(FormResponse.form_id == form.id).delete(synchronize_session=False)
    s.delete(form)
    return removed


def normalize_referrer(raw: Any) -> str | None:
    value = (clean_str(raw) or "").lower()
    if not value or value == "none":
        return None
    return value


def _missing_required(form: Form, answers: list) -> list[str]:
    answered = {}
    for a in answers:
        if isinstance(a, dict) and a.get("fieldId") is not None:
            answered[str(a.get("fieldId"))] = a.get("value")
    missing = []
    for field in form.fields or []:
        if not field.get("required"):
            continue
        value = answered.get(str(field.get("id")))
        if value is None or (isinstance(value, str) and not value.strip()) or value == []:
            missing.append(field.get("label") or field.get("id"))
    return missing


def submit_form(
    s: "Session",
    event: "Event",
    form: Form,
    user: "User",
    payload: dict,
) -> tuple[FormResponse, bool]:
    """
    Record user's answers. Returns (response, registered_for_event).

    RSVP forms also register the user for the event. Notifications go out
    best-effort after the response is flushed.
    """
    answers = payload.get("answers")
    if not isinstance(answers, list):
        raise FormSubmissionError("Invalid answers format")

    existing = (
        s.query(FormResponse.id)
        .filter(FormResponse.form_id == form.id, FormResponse.user_id == user.id)
        .first()
    )
    if existing:
        raise FormSubmissionError("You have already submitted this form")

    missing = _missing_required(form, answers)
    if missing:
        raise FormSubmissionError(f"Missing required fields: {', '.join(missing)}")

    now = datetime.utcnow()
    referred_by = normalize_referrer(payload.get("referredBy"))
    response = FormResponse(
        form_id=form.id,
        event_id=event.id,
        user_id=user.id,
        answers=answers,
        shortlisted=False,
        checked_in=False,
        referred_by=referred_by,
        referral_code=clean_str(payload.get("referralCode")),
        user_name=user.name,
        user_email=user.email,
        event_title=event.title or UNKNOWN_EVENT,
        form_title=form.title or DEFAULT_FORM_TITLE,
        created_at=now,
        updated_at=now,
    )
    s.add(response)
    s.flush()

    registered = False
    if form.is_rsvp_form:
        reg = register_user(
            s,
            event,
            user,
            registration_type="form",
            form_response_id=response.id,
            enforce_capacity=False,
        )
        registered = reg is not None

    _notify_submission(s, event, form, user, referred_by, is_rsvp=form.is_rsvp_form)
    return response, registered


def _notify_submission(
    s: "Session",
    event: "Event",
    form: Form,
    user: "User",
    referred_by: str | None,
    *,
    is_rsvp: bool,
) -> None:
    event_url = f"/events/{event.id}"
    display_name = user.name or user.email
    if is_rsvp:
        notify_quietly(
            s,
            user_id=user.id,
            title="Event Registration Confirmed",
            message=f'You have successfully registered for "{event.title}".',
            type="success",
            action_url=event_url,
            action_text="View Event",
        )
    else:
        notify_quietly(
            s,
            user_id=user.id,
            title="Form Submitted Successfully",
            message=f'Your response to "{form.title}" for "{event.title}" has been recorded.',
            type="success",
            action_url=event_url,
            action_text="View Event",
        )

    if referred_by and referred_by != (user.email or "").lower():
        notify_quietly(
            s,
            user_email=referred_by,
            title="Referral Success!",
            message=f'{display_name} registered for "{event.title}" using your referral.',
            type="success",
            action_url="/technical-lead/referrals",
            action_text="View Referrals",
        )

    if event.creator_id and event.creator_id != user.id:
        notify_quietly(
            s,
            user_id=event.creator_id,
            title="New Event Registration",
            message=f'{display_name} submitted "{form.title}" for "{event.title}".',
            type="info",
            action_url=f"{event_url}/forms/{form.id}",
            action_text="View Responses",
        )


def update_response_flags(response: FormResponse, payload: dict) -> FormResponse:
    if "shortlisted" in payload:
        response.shortlisted = as_bool(payload.get("shortlisted"))
    if "checkedIn" in payload:
        checked_in = as_bool(payload.get("checkedIn"))
        if checked_in and not response.checked_in:
            response.checked_in_at = datetime.utcnow()
        elif not checked_in:
            response.checked_in_at = None
        response.checked_in = checked_in
    response.updated_at = datetime.utcnow()
    return response


# ---------- Serialization ----------
def serialize_form(form: Form, *, response_count: int | None = None) -> dict[str, Any]:
    out = {
        "id": form.id,
        "eventId": form.event_id,
        "title": form.title,
        "description": form.description,
        "fields": [
            {
                "id": f.get("id"),
                "label": f.get("label"),
                "type": f.get("type"),
                "required": bool(f.get("required")),
                "options": f.get("options"),
                "fileTypes": f.get("fileTypes"),
                "maxFileSize": f.get("maxFileSize"),
            }
            for f in form.fields or []
        ],
        "isRSVPForm": form.is_rsvp_form,
        "creatorId": form.creator_id,
        "createdAt": isoformat(form.created_at),
        "updatedAt": isoformat(form.updated_at),
    }
    if response_count is not None:
        out["responseCount"] = response_count
    return out


def serialize_response(r: FormResponse, user: "User | None") -> dict[str, Any]:
    return {
        "id": r.id,
        "userId": r.user_id,
        "user": {
            "name": (user.name if user else None) or r.user_name or "Unknown User",
            "email": (user.email if user else None) or r.user_email or "No email",
        },
        "answers": r.answers or [],
        "shortlisted": r.shortlisted,
        "checkedIn": r.checked_in,
        "checkedInAt": isoformat(r.checked_in_at),
        "referredBy": r.referred_by,
        "submittedAt": isoformat(r.created_at),
    }
