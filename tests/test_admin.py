"""Tests for admin token endpoints, community delete and role diagnostics."""
from datetime import date, datetime, timedelta

import jwt
import pytest

from app.ctc.db import session_scope
from app.ctc.models import AuditEvent
from app.ctc.modules.communities.models import Community, CommunityFollow, CommunityMembership, CommunityUpdate
from app.ctc.modules.events.models import Event, EventRegistration
from app.ctc.modules.forms.models import Form, FormResponse
from app.ctc.modules.notifications.models import Notification


@pytest.fixture()
def people(make_user):
    return {
        "admin": make_user("admin@example.com", role="admin", name="Admin"),
        "ops": make_user("ops@example.com", role="operator", name="Ops"),
        "user": make_user("user@example.com", name="User"),
    }


def _token(client, email="admin@example.com"):
    r = client.post("/api/admin/login", json={"email": email, "password": "password123"})
    assert r.status_code == 200, r.json
    return r.json["token"]


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_admin_login_only_for_admins(client, people):
    r = client.post("/api/admin/login", json={"email": "ops@example.com", "password": "password123"})
    assert r.status_code == 401
    r = client.post("/api/admin/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401

    r = client.post("/api/admin/login", json={"email": "admin@example.com", "password": "password123"})
    assert r.status_code == 200
    assert r.json["expiresIn"] == 480 * 60
    claims = jwt.decode(r.json["token"], "test-admin-secret", algorithms=["HS256"])
    assert claims["role"] == "admin"
    assert claims["email"] == "admin@example.com"


def test_token_required(client, people):
    r = client.get("/api/admin/dashboard/stats")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized: No token provided"

    r = client.get("/api/admin/dashboard/stats", headers=_auth("not-a-jwt"))
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized: Invalid token"

    forged = jwt.encode({"sub": "1", "role": "admin"}, "some-other-secret", algorithm="HS256")
    assert client.get("/api/admin/dashboard/stats", headers=_auth(forged)).status_code == 401

    not_admin = jwt.encode(
        {"sub": str(people["user"]), "role": "user", "exp": datetime.utcnow() + timedelta(minutes=5)},
        "test-admin-secret",
        algorithm="HS256",
    )
    assert client.get("/api/admin/dashboard/stats", headers=_auth(not_admin)).status_code == 401

    expired = jwt.encode(
        {"sub": str(people["admin"]), "role": "admin", "exp": datetime.utcnow() - timedelta(minutes=5)},
        "test-admin-secret",
        algorithm="HS256",
    )
    assert client.get("/api/admin/dashboard/stats", headers=_auth(expired)).status_code == 401


def test_dashboard_stats(client, people, login):
    login("user@example.com")
    client.post("/api/communities", json={"name": "Dev Club", "handle": "devclub"})

    token = _token(client)
    r = client.get("/api/admin/dashboard/stats", headers=_auth(token))
    assert r.status_code == 200
    assert r.json["totalUsers"] == 3
    assert r.json["totalCommunities"] == 1
    assert r.json["totalEvents"] == 0
    assert len(r.json["recentUsers"]) == 3
    now = datetime.utcnow()
    assert r.json["monthlyGrowth"] == [{"year": now.year, "month": now.month, "count": 3}]

    r = client.get("/api/admin/communities/stats", headers=_auth(token))
    assert r.json["total"] == 1
    assert r.json["active"] == 1
    assert r.json["recentCommunities"][0]["handle"] == "devclub"


def test_token_user_admin_endpoints_skip_csrf(client, people):
    token = _token(client)
    r = client.get("/api/admin/users?search=ops", headers=_auth(token))
    assert [u["email"] for u in r.json["users"]] == ["ops@example.com"]

    # No CSRF token on this client: bearer requests don't need one.
    r = client.post(
        "/api/admin/users/promote",
        json={"userId": people["user"], "newRole": "admin"},
        headers=_auth(token),
    )
    assert r.status_code == 200
    assert r.json["user"]["role"] == "admin"


@pytest.fixture()
def community(ctc_app, client, people, login):
    """A community with a member, follower, update, event, form response and registration."""
    login("ops@example.com")
    c = client.post("/api/communities", json={"name": "Doomed", "handle": "doomed"}).json["community"]
    event = client.post(
        "/api/events",
        json={"communityId": c["id"], "title": "Last Hurrah", "date": (date.today() + timedelta(days=2)).isoformat()},
    ).json["event"]
    form = client.post(
        f"/api/events/{event['id']}/forms",
        json={
            "title": "RSVP",
            "isRSVPForm": True,
            "fields": [{"id": "name", "label": "Name", "type": "text"}],
        },
    ).json["form"]
    client.post(f"/api/communities/{c['id']}/updates", json={"title": "News", "content": "Stuff"})

    login("user@example.com")
    client.post(f"/api/communities/{c['id']}/join")
    client.post(f"/api/communities/{c['id']}/follow")
    r = client.post(f"/api/events/{event['id']}/forms/{form['id']}/submit", json={"answers": []})
    assert r.status_code == 201
    return c


def _counts(ctc_app):
    with session_scope(ctc_app) as s:
        return {
            "communities": s.query(Community).count(),
            "memberships": s.query(CommunityMembership).count(),
            "follows": s.query(CommunityFollow).count(),
            "updates": s.query(CommunityUpdate).count(),
            "events": s.query(Event).count(),
            "forms": s.query(Form).count(),
            "responses": s.query(FormResponse).count(),
            "registrations": s.query(EventRegistration).count(),
        }


def test_community_delete_requires_admin(client, community, login):
    login("ops@example.com")
    r = client.delete(f"/api/admin/communities/delete/{community['id']}")
    assert r.status_code == 403


def test_community_delete_cascades(ctc_app, client, people, community, login):
    login("admin@example.com")
    assert client.delete("/api/admin/communities/delete/999").status_code == 404

    r = client.delete(f"/api/admin/communities/delete/{community['id']}")
    assert r.status_code == 200
    assert r.json["deletedEvents"] == 1
    assert r.json["notifiedMembers"] == 2

    assert _counts(ctc_app) == {
        "communities": 0,
        "memberships": 0,
        "follows": 0,
        "updates": 0,
        "events": 0,
        "forms": 0,
        "responses": 0,
        "registrations": 0,
    }
    with session_scope(ctc_app) as s:
        notified = {
            n.user_id for n in s.query(Notification).filter(Notification.title == "Community Deleted").all()
        }
        assert notified == {people["ops"], people["user"]}
        assert s.query(AuditEvent).filter(AuditEvent.action == "community.delete").count() == 1


def test_community_delete_rolls_back_on_failure(ctc_app, client, community, login, monkeypatch):
    before = _counts(ctc_app)

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("app.ctc.admin.delete_event", broken)
    login("admin@example.com")
    r = client.delete(f"/api/admin/communities/delete/{community['id']}")
    assert r.status_code == 500
    assert r.json == {"error": "Internal server error"}

    assert _counts(ctc_app) == before
    with session_scope(ctc_app) as s:
        assert s.query(Notification).filter(Notification.title == "Community Deleted").count() == 0


def test_debug_user_role_bootstrap(client, make_user, login):
    make_user("first@example.com")
    make_user("second@example.com")

    login("first@example.com")
    r = client.get("/api/debug/user-role")
    assert r.status_code == 200
    assert r.json["isAdmin"] is False

    # No admin yet: self-promotion is allowed once.
    r = client.post("/api/debug/user-role", json={"newRole": "admin"})
    assert r.status_code == 200
    assert r.json["isAdmin"] is True

    login("second@example.com")
    r = client.post("/api/debug/user-role", json={"newRole": "admin"})
    assert r.status_code == 403

    r = client.post("/api/debug/user-role", json={"newRole": "emperor"})
    assert r.status_code == 400


def test_debug_user_role_hidden_in_production(ctc_app, client, people, login):
    login("user@example.com")
    ctc_app.config["ENV"] = "production"
    assert client.get("/api/debug/user-role").status_code == 404

    ctc_app.config["ADMIN_DIAGNOSTICS_ENABLED"] = True
    assert client.get("/api/debug/user-role").status_code == 200
