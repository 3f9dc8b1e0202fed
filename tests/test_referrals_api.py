"""Referral endpoints over real form responses."""
from datetime import date, datetime, timedelta

import pytest

from app.ctc.db import session_scope
from app.ctc.modules.communities.models import Community
from app.ctc.modules.events.models import Event
from app.ctc.modules.forms.models import Form, FormResponse


@pytest.fixture()
def referrals(ctc_app, make_user):
    """Two TLs, one former TL and a handful of responses from this month."""
    ids = {
        "owner": make_user("owner@example.com", name="Owner"),
        "tl_a": make_user("asha@example.com", role="technical_lead", name="Asha"),
        "tl_b": make_user("bo@example.com", role="technical_lead", name="Bo"),
        "former": make_user("former@example.com", name="Former Lead"),
        "operator": make_user("ops@example.com", role="operator", name="Ops"),
    }
    students = [make_user(f"s{i}@example.com", name=f"Student {i}") for i in range(4)]

    now = datetime.utcnow()
    with session_scope(ctc_app) as s:
        community = Community(name="Dev Club", handle="devclub", creator_id=ids["owner"])
        s.add(community)
        s.flush()
        event = Event(
            community_id=community.id,
            creator_id=ids["owner"],
            title="Hack Night",
            date=(date.today() + timedelta(days=3)).isoformat(),
        )
        s.add(event)
        s.flush()
        form = Form(event_id=event.id, creator_id=ids["owner"], title="Sign up", fields=[])
        s.add(form)
        s.flush()
        referrers = ["asha@example.com", "asha@example.com", "bo@example.com", "former@example.com"]
        for student_id, referrer in zip(students, referrers):
            s.add(
                FormResponse(
                    form_id=form.id,
                    event_id=event.id,
                    user_id=student_id,
                    answers=[],
                    referred_by=referrer,
                    user_name=f"Student {student_id}",
                    event_title="Hack Night",
                    form_title="Sign up",
                    created_at=now,
                    updated_at=now,
                )
            )
        ids["event"] = event.id
    return ids


def test_home_leaderboard_is_public(client, referrals):
    r = client.get("/api/home/referrals")
    assert r.status_code == 200
    assert r.json["success"] is True

    board = r.json["leaderboard"]
    assert board[0]["email"] == "asha@example.com"
    assert board[0]["name"] == "Asha"
    assert board[0]["referrals"] == 2
    names = {e["email"]: e["name"] for e in board}
    assert names["former@example.com"] == "Unknown TL"

    assert len(r.json["recentReferrals"]) == 4
    assert r.json["stats"] == {"totalReferralsThisMonth": 4, "activeTLsThisMonth": 3, "totalTLs": 2}


def test_own_referrals_requires_technical_lead(client, referrals, login):
    login("owner@example.com")
    assert client.get("/api/technical-lead/referrals").status_code == 403

    login("asha@example.com")
    r = client.get("/api/technical-lead/referrals")
    assert r.status_code == 200
    assert r.json["totalReferrals"] == 2
    assert r.json["thisMonth"] == 2
    assert r.json["topEvents"] == [{"eventId": referrals["event"], "eventTitle": "Hack Night", "referrals": 2}]


def test_public_technical_lead_profile(client, referrals):
    r = client.get("/api/profile/technical-lead/Bo@Example.com")
    assert r.status_code == 200
    assert r.json["profile"]["name"] == "Bo"
    assert r.json["profile"]["bio"] == "Technical Lead helping students discover amazing events"
    assert r.json["stats"]["totalReferrals"] == 1

    r = client.get("/api/profile/technical-lead/former@example.com")
    assert r.status_code == 404
    assert r.json["error"] == "Technical Lead not found"


def test_admin_technical_leads(client, referrals, login):
    login("asha@example.com")
    assert client.get("/api/admin/technical-leads").status_code == 403

    login("ops@example.com")
    r = client.get("/api/admin/technical-leads")
    assert r.status_code == 200
    leads = r.json["technicalLeads"]
    assert [tl["email"] for tl in leads] == ["asha@example.com", "bo@example.com"]
    assert leads[0]["stats"]["thisWeek"] == 2
    assert "monthlyBreakdown" not in leads[0]["stats"]
    assert r.json["summary"] == {"totalTLs": 2, "activeTLs": 2, "totalReferrals": 3, "thisMonthReferrals": 3}


def test_admin_technical_lead_profiles_count_all_referrals(client, referrals, login):
    login("ops@example.com")
    r = client.get("/api/admin/technical-leads/profiles")
    assert r.status_code == 200
    profiles = r.json["profiles"]
    assert len(profiles) == 2
    assert len(profiles[0]["stats"]["monthlyBreakdown"]) == 6
    assert profiles[0]["lastActive"] is not None
    # The former TL's referral still counts towards platform volume.
    assert r.json["summary"]["totalReferrals"] == 4
    assert r.json["summary"]["thisMonthReferrals"] == 4
    assert r.json["summary"]["totalTLs"] == 2


def test_top_events_ties_list_most_recent_event_first(ctc_app, client, referrals):
    now = datetime.utcnow()
    with session_scope(ctc_app) as s:
        event = Event(
            community_id=s.get(Event, referrals["event"]).community_id,
            creator_id=referrals["owner"],
            title="Demo Day",
            date=(date.today() + timedelta(days=5)).isoformat(),
        )
        s.add(event)
        s.flush()
        form = Form(event_id=event.id, creator_id=referrals["owner"], title="Sign up", fields=[])
        s.add(form)
        s.flush()
        s.add(
            FormResponse(
                form_id=form.id,
                event_id=event.id,
                user_id=referrals["operator"],
                answers=[],
                referred_by="bo@example.com",
                event_title="Demo Day",
                form_title="Sign up",
                created_at=now + timedelta(minutes=1),
                updated_at=now + timedelta(minutes=1),
            )
        )

    r = client.get("/api/profile/technical-lead/bo@example.com")
    assert [e["eventTitle"] for e in r.json["stats"]["topEvents"]] == ["Demo Day", "Hack Night"]
