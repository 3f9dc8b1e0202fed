"""Tests for event forms, submissions and their side effects."""
from datetime import date, timedelta

import pytest

from app.ctc.db import session_scope
from app.ctc.modules.events.models import EventRegistration
from app.ctc.modules.forms.models import FormResponse
from app.ctc.modules.notifications.models import Notification

FIELDS = [
    {"id": "name", "label": "Full name", "type": "text", "required": True},
    {"id": "track", "label": "Track", "type": "select", "options": ["web", "ml"]},
]


@pytest.fixture()
def event(client, make_user, login):
    ids = {
        "owner": make_user("owner@example.com", name="Owner"),
        "member": make_user("member@example.com", name="Member"),
        "student": make_user("student@example.com", name="Student"),
        "tl": make_user("tl@example.com", role="technical_lead", name="Tara Lead"),
    }
    login("owner@example.com")
    r = client.post("/api/communities", json={"name": "Dev Club", "handle": "devclub"})
    ids["community"] = r.json["community"]["id"]
    r = client.post(
        "/api/events",
        json={
            "communityId": ids["community"],
            "title": "Hack Night",
            "date": (date.today() + timedelta(days=7)).isoformat(),
        },
    )
    ids["event"] = r.json["event"]["id"]
    return ids


def _create_form(client, event_id, *, rsvp=False, fields=FIELDS):
    r = client.post(
        f"/api/events/{event_id}/forms",
        json={"title": "Sign up", "fields": fields, "isRSVPForm": rsvp},
    )
    assert r.status_code == 201, r.json
    return r.json["form"]


def _titles_for(ctc_app, user_id):
    with session_scope(ctc_app) as s:
        return [n.title for n in s.query(Notification).filter(Notification.user_id == user_id).all()]


def test_create_form_validation(client, event):
    r = client.post(f"/api/events/{event['event']}/forms", json={"title": "Empty", "fields": []})
    assert r.status_code == 400
    assert "Fields must be a non-empty list." in r.json["error"]

    r = client.post(
        f"/api/events/{event['event']}/forms",
        json={"title": "No options", "fields": [{"id": "x", "label": "X", "type": "radio"}]},
    )
    assert r.status_code == 400
    assert "requires options" in r.json["error"]

    r = client.post(
        f"/api/events/{event['event']}/forms",
        json={"title": "Weird", "fields": [{"id": "x", "label": "X", "type": "hologram"}]},
    )
    assert r.status_code == 400


def test_form_creation_needs_membership(client, event, login):
    login("student@example.com")
    r = client.post(f"/api/events/{event['event']}/forms", json={"title": "Nope", "fields": FIELDS})
    assert r.status_code == 403

    client.post(f"/api/communities/{event['community']}/join")
    form = _create_form(client, event["event"])
    assert form["fields"][1]["options"] == ["web", "ml"]

    r = client.get(f"/api/events/{event['event']}/forms")
    assert [f["responseCount"] for f in r.json["forms"]] == [0]


def test_submit_form(ctc_app, client, event, login):
    form = _create_form(client, event["event"])
    url = f"/api/events/{event['event']}/forms/{form['id']}/submit"

    login("student@example.com")
    r = client.post(url, json={"answers": "not a list"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid answers format"

    r = client.post(url, json={"answers": [{"fieldId": "track", "value": "ml"}]})
    assert r.status_code == 400
    assert r.json["error"] == "Missing required fields: Full name"

    r = client.post(url, json={"answers": [{"fieldId": "name", "value": "Stu Dent"}], "referredBy": "none"})
    assert r.status_code == 201
    assert r.json["message"] == "Form submitted successfully"
    assert r.json["registered"] is False

    r = client.post(url, json={"answers": [{"fieldId": "name", "value": "Again"}]})
    assert r.status_code == 400
    assert r.json["error"] == "You have already submitted this form"

    with session_scope(ctc_app) as s:
        response = s.query(FormResponse).one()
        assert response.referred_by is None
        assert response.event_title == "Hack Night"
        assert response.user_email == "student@example.com"

    assert _titles_for(ctc_app, event["student"]) == ["Form Submitted Successfully"]
    assert _titles_for(ctc_app, event["owner"]) == ["New Event Registration"]


def test_rsvp_form_registers_and_credits_referrer(ctc_app, client, event, login):
    form = _create_form(client, event["event"], rsvp=True)

    login("student@example.com")
    r = client.post(
        f"/api/events/{event['event']}/forms/{form['id']}/submit",
        json={"answers": [{"fieldId": "name", "value": "Stu"}], "referredBy": "TL@Example.com"},
    )
    assert r.status_code == 201
    assert r.json["registered"] is True
    assert r.json["message"] == "Successfully registered for the event!"

    with session_scope(ctc_app) as s:
        reg = s.query(EventRegistration).one()
        assert reg.registration_type == "form"
        assert reg.user_id == event["student"]
        assert s.query(FormResponse).one().referred_by == "tl@example.com"

    assert _titles_for(ctc_app, event["student"]) == ["Event Registration Confirmed"]
    assert _titles_for(ctc_app, event["tl"]) == ["Referral Success!"]

    # The registration also shows up through the events API.
    r = client.get(f"/api/events/{event['event']}")
    assert r.json["event"]["attendees"] == [event["student"]]


def test_rsvp_keeps_existing_direct_registration(ctc_app, client, event, login):
    form = _create_form(client, event["event"], rsvp=True)

    login("student@example.com")
    client.post(f"/api/events/{event['event']}/register")
    r = client.post(
        f"/api/events/{event['event']}/forms/{form['id']}/submit",
        json={"answers": [{"fieldId": "name", "value": "Stu"}]},
    )
    assert r.status_code == 201
    assert r.json["registered"] is False

    with session_scope(ctc_app) as s:
        assert s.query(EventRegistration).one().registration_type == "direct"


def test_notification_failure_does_not_block_submission(ctc_app, client, event, login, monkeypatch):
    form = _create_form(client, event["event"], rsvp=True)

    def broken(*args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr("app.ctc.modules.notifications.service.send_notification", broken)

    login("student@example.com")
    r = client.post(
        f"/api/events/{event['event']}/forms/{form['id']}/submit",
        json={"answers": [{"fieldId": "name", "value": "Stu"}], "referredBy": "tl@example.com"},
    )
    assert r.status_code == 201

    with session_scope(ctc_app) as s:
        assert s.query(FormResponse).count() == 1
        assert s.query(EventRegistration).count() == 1
        assert s.query(Notification).count() == 0


def test_responses_visible_to_editors_only(client, event, login):
    form = _create_form(client, event["event"])
    login("student@example.com")
    client.post(
        f"/api/events/{event['event']}/forms/{form['id']}/submit",
        json={"answers": [{"fieldId": "name", "value": "Stu"}]},
    )

    r = client.get(f"/api/events/{event['event']}/forms/{form['id']}")
    assert r.status_code == 200
    assert "responses" not in r.json

    login("owner@example.com")
    r = client.get(f"/api/events/{event['event']}/forms/{form['id']}")
    responses = r.json["responses"]
    assert len(responses) == 1
    assert responses[0]["user"] == {"name": "Student", "email": "student@example.com"}


def test_form_must_belong_to_event(client, event):
    form = _create_form(client, event["event"])
    r = client.post(
        "/api/events",
        json={"communityId": event["community"], "title": "Other", "date": date.today().isoformat()},
    )
    other_event = r.json["event"]["id"]

    assert client.get(f"/api/events/{other_event}/forms/{form['id']}").status_code == 404
    assert client.get(f"/api/events/999/forms/{form['id']}").status_code == 404


def test_response_flags(client, event, login):
    form = _create_form(client, event["event"])
    login("student@example.com")
    r = client.post(
        f"/api/events/{event['event']}/forms/{form['id']}/submit",
        json={"answers": [{"fieldId": "name", "value": "Stu"}]},
    )
    response_id = r.json["id"]
    url = f"/api/events/{event['event']}/forms/{form['id']}/responses/{response_id}"

    assert client.patch(url, json={"shortlisted": True}).status_code == 403

    login("owner@example.com")
    r = client.patch(url, json={"shortlisted": True, "checkedIn": True})
    assert r.status_code == 200
    assert r.json["response"]["shortlisted"] is True
    assert r.json["response"]["checkedIn"] is True
    assert r.json["response"]["checkedInAt"] is not None

    r = client.patch(url, json={"checkedIn": False})
    assert r.json["response"]["checkedInAt"] is None


def test_update_and_delete_form(client, event, login):
    form = _create_form(client, event["event"])
    url = f"/api/events/{event['event']}/forms/{form['id']}"

    login("member@example.com")
    client.post(f"/api/communities/{event['community']}/join")
    r = client.patch(url, json={"title": "Sign up (v2)"})
    assert r.status_code == 200
    assert r.json["form"]["title"] == "Sign up (v2)"
    assert client.delete(url).status_code == 403

    login("student@example.com")
    client.post(f"{url}/submit", json={"answers": [{"fieldId": "name", "value": "Stu"}]})

    login("owner@example.com")
    r = client.delete(url)
    assert r.status_code == 200
    assert r.json["responsesDeleted"] == 1
    assert client.get(url).status_code == 404
