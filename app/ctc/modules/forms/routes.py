from __future__ import annotations

from flask import Blueprint, abort, g
from sqlalchemy import func

from app.ctc.db import db_session
from app.ctc.models import User
from app.ctc.modules.events.models import Event
from app.ctc.modules.events.service import event_permissions
from app.ctc.modules.forms.models import Form, FormResponse
from app.ctc.modules.forms.service import (
    FormSubmissionError,
    create_form,
    delete_form,
    serialize_form,
    serialize_response,
    submit_form,
    update_form,
    update_response_flags,
    validate_form_payload,
)
from app.ctc.rbac import current_user, require_login
from app.ctc.utils import json_payload

bp = Blueprint("forms", __name__)


def _get_event_form_or_404(event_id: int, form_id: int) -> tuple[Event, Form]:
    s = db_session()
    event = s.get(Event, event_id)
    if not event:
        abort(404, description="Event not found")
    form = s.get(Form, form_id)
    if not form or form.event_id != event.id:
        abort(404, description="Form not found")
    return event, form


@bp.get("/api/events/<int:event_id>/forms")
def forms_list(event_id: int):
    s = db_session()
    if not s.get(Event, event_id):
        abort(404, description="Event not found")
    forms = s.query(Form).filter(Form.event_id == event_id).order_by(Form.created_at.asc(), Form.id.asc()).all()
    counts = dict(
        s.query(FormResponse.form_id, func.count())
        .filter(FormResponse.event_id == event_id)
        .group_by(FormResponse.form_id)
        .all()
    )
    return {"forms": [serialize_form(f, response_count=int(counts.get(f.id, 0))) for f in forms]}


@bp.post("/api/events/<int:event_id>/forms")
@require_login
def forms_create(event_id: int):
    s = db_session()
    u = current_user()
    event = s.get(Event, event_id)
    if not event:
        abort(404, description="Event not found")
    if not event_permissions(s, event, u)["canCreateForms"]:
        abort(403, description="You do not have permission to create forms for this event")
    payload = json_payload()
    errors = validate_form_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))
    form = create_form(s, event, payload, u)
    s.commit()
    return {"form": serialize_form(form)}, 201


@bp.get("/api/events/<int:event_id>/forms/<int:form_id>")
def form_detail(event_id: int, form_id: int):
    s = db_session()
    event, form = _get_event_form_or_404(event_id, form_id)
    perms = event_permissions(s, event, getattr(g, "current_user", None))
    out = {"form": serialize_form(form), "event": {"id": event.id, "title": event.title}}
    if perms["canEdit"]:
        rows = (
            s.query(FormResponse, User)
            .outerjoin(User, User.id == FormResponse.user_id)
            .filter(FormResponse.form_id == form.id)
            .order_by(FormResponse.created_at.asc(), FormResponse.id.asc())
            .all()
        )
        out["responses"] = [serialize_response(r, user) for r, user in rows]
    return out


@bp.patch("/api/events/<int:event_id>/forms/<int:form_id>")
@require_login
def form_update(event_id: int, form_id: int):
    s = db_session()
    u = current_user()
    event, form = _get_event_form_or_404(event_id, form_id)
    perms = event_permissions(s, event, u)
    if not (perms["isAdmin"] or perms["isCreator"] or perms["isMember"]):
        abort(403, description="You do not have permission to edit this form")
    payload = json_payload()
    errors = validate_form_payload(payload, partial=True)
    if errors:
        abort(400, description=" ".join(errors))
    update_form(form, payload)
    s.commit()
    return {"form": serialize_form(form)}


@bp.delete("/api/events/<int:event_id>/forms/<int:form_id>")
@require_login
def form_delete(event_id: int, form_id: int):
    s = db_session()
    u = current_user()
    event, form = _get_event_form_or_404(event_id, form_id)
    perms = event_permissions(s, event, u)
    if not (perms["isAdmin"] or perms["isCreator"]):
        abort(403, description="You do not have permission to delete this form")
    removed = delete_form(s, form)
    s.commit()
    return {"success": True, "message": "Form deleted successfully", "responsesDeleted": removed}


@bp.post("/api/events/<int:event_id>/forms/<int:form_id>/submit")
@require_login
def form_submit(event_id: int, form_id: int):
    s = db_session()
    u = current_user()
    event, form = _get_event_form_or_404(event_id, form_id)
    payload = json_payload()
    try:
        response, registered = submit_form(s, event, form, u, payload)
    except FormSubmissionError as e:
        s.rollback()
        abort(400, description=str(e))
    s.commit()
    message = "Successfully registered for the event!" if form.is_rsvp_form else "Form submitted successfully"
    return {"success": True, "id": response.id, "registered": registered, "message": message}, 201


@bp.patch("/api/events/<int:event_id>/forms/<int:form_id>/responses/<int:response_id>")
@require_login
def form_response_update(event_id: int, form_id: int, response_id: int):
    s = db_session()
    u = current_user()
    event, form = _get_event_form_or_404(event_id, form_id)
    if not event_permissions(s, event, u)["canEdit"]:
        abort(403, description="You do not have permission to manage responses")
    response = s.get(FormResponse, response_id)
    if not response or response.form_id != form.id:
        abort(404, description="Response not found")
    update_response_flags(response, json_payload())
    s.commit()
    return {"response": serialize_response(response, s.get(User, response.user_id))}
