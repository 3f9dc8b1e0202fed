"""Tests for the Study and Training & Placement (TNP) post modules."""
import pytest

from app.ctc.db import session_scope
from app.ctc.modules.notifications.models import Notification


@pytest.fixture()
def staff(make_user):
    return {
        "ops": make_user("ops@example.com", role="operator", name="Ops Person"),
        "user": make_user("user@example.com"),
        "s1": make_user("s1@example.com", role="ctc_student"),
        "s2": make_user("s2@example.com", role="ctc_student"),
    }


STUDY = {
    "title": "Graph Algorithms",
    "content": "BFS, DFS and shortest paths",
    "type": "notes",
    "subject": "DSA",
    "semester": "3",
}


def test_study_list_is_public(client):
    r = client.get("/api/study")
    assert r.status_code == 200
    assert r.json == {"success": True, "data": []}


def test_study_create_requires_staff(client, staff, login):
    login("user@example.com")
    assert client.post("/api/study", json=STUDY).status_code == 403


def test_study_crud(client, staff, login):
    login("ops@example.com")
    r = client.post("/api/study", json={"title": "Missing type", "content": "x"})
    assert r.status_code == 400
    assert "Type is required." in r.json["error"]

    r = client.post(
        "/api/study",
        json={
            **STUDY,
            "tags": "dsa, graphs ,",
            "attachments": [
                {"url": "/media/notes.pdf", "type": "application/pdf", "name": "notes.pdf"},
                {"url": "/media/cover.png", "type": "image/png", "name": "cover.png"},
            ],
        },
    )
    assert r.status_code == 201
    post = r.json["data"]
    assert post["tags"] == ["dsa", "graphs"]
    assert post["image"] == "/media/cover.png"
    assert post["community"]["name"] == "Study Resources"
    assert post["author"]["name"] == "Ops Person"

    r = client.get(f"/api/study/{post['id']}")
    assert r.json["data"]["title"] == "Graph Algorithms"

    r = client.put(f"/api/study/{post['id']}", json={**STUDY, "title": "Graphs II", "tags": ""})
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Graphs II"
    assert r.json["data"]["tags"] == ["study", "notes"]

    assert client.delete(f"/api/study/{post['id']}").status_code == 200
    assert client.get(f"/api/study/{post['id']}").status_code == 404
    assert client.put("/api/study/999", json=STUDY).status_code == 404


TNP = {
    "title": "Backend Intern",
    "content": "Work on APIs",
    "type": "internship",
    "company": "Acme",
    "deadline": "2026-12-01",
}


def test_tnp_create_notifies_students(ctc_app, client, staff, login):
    login("ops@example.com")
    r = client.post("/api/tnp", json=TNP)
    assert r.status_code == 201
    assert r.json["notified"] == 2
    post = r.json["data"]
    assert post["tags"] == ["internship", "tnp"]
    assert post["deadline"] == "2026-12-01T00:00:00"
    assert post["community"]["name"] == "Training & Placement Cell"

    with session_scope(ctc_app) as s:
        rows = s.query(Notification).all()
        assert {n.user_id for n in rows} == {staff["s1"], staff["s2"]}
        assert {n.title for n in rows} == {"New Internship Opportunity"}
        assert {n.message for n in rows} == {"Backend Intern at Acme"}


def test_tnp_create_without_students_still_succeeds(client, make_user, login):
    make_user("ops@example.com", role="operator")
    login("ops@example.com")
    r = client.post("/api/tnp", json=TNP)
    assert r.status_code == 201
    assert r.json["notified"] == 0


def test_tnp_validation_and_permissions(client, staff, login):
    login("user@example.com")
    assert client.post("/api/tnp", json=TNP).status_code == 403

    login("ops@example.com")
    r = client.post("/api/tnp", json={**TNP, "deadline": "whenever"})
    assert r.status_code == 400
    assert "deadline" in r.json["error"]


def test_tnp_update_delete(client, staff, login):
    login("ops@example.com")
    post_id = client.post("/api/tnp", json=TNP).json["data"]["id"]

    r = client.put(f"/api/tnp/{post_id}", json={**TNP, "type": "job", "salary": "12 LPA"})
    assert r.status_code == 200
    assert r.json["data"]["tags"] == ["job", "tnp"]
    assert r.json["data"]["salary"] == "12 LPA"

    assert client.delete(f"/api/tnp/{post_id}").status_code == 200
    assert client.get(f"/api/tnp/{post_id}").status_code == 404


def test_tnp_seed(client, staff, login):
    login("ops@example.com")
    r = client.post("/api/tnp/seed")
    assert r.status_code == 201
    assert r.json["count"] == 3

    r = client.get("/api/tnp")
    assert len(r.json["data"]) == 3
    assert all(p["author"]["email"] == "ops@example.com" for p in r.json["data"])
