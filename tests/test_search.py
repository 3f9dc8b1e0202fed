from datetime import date, timedelta

from app.ctc.db import session_scope
from app.ctc.modules.communities.models import Community


def _seed(client):
    c = client.post(
        "/api/communities",
        json={"name": "Python Society", "handle": "pysoc", "description": "100% snakes"},
    ).json["community"]
    client.post(
        "/api/events",
        json={
            "communityId": c["id"],
            "title": "Python Workshop",
            "date": (date.today() + timedelta(days=1)).isoformat(),
            "location": "Lab 1000",
        },
    )
    return c


def test_search_requires_login_and_query(client, make_user, login):
    assert client.get("/api/search?q=python").status_code == 401

    make_user("student@example.com")
    login("student@example.com")
    r = client.get("/api/search")
    assert r.status_code == 400
    assert r.json["error"] == "Query parameter is required"
    assert client.get("/api/search?q=%20%20").status_code == 400


def test_search_across_kinds(client, make_user, login):
    make_user("ops@example.com", role="operator")
    login("ops@example.com")
    _seed(client)
    client.post("/api/study", json={"title": "Python Basics", "content": "Intro", "type": "notes"})
    client.post("/api/tnp", json={"title": "Python Developer", "content": "Backend role", "type": "job"})

    r = client.get("/api/search?q=PYTHON")
    assert r.status_code == 200
    assert r.json["query"] == "PYTHON"
    results = r.json["results"]
    assert [e["title"] for e in results["events"]] == ["Python Workshop"]
    assert results["events"][0]["community"]["handle"] == "pysoc"
    assert [c["handle"] for c in results["communities"]] == ["pysoc"]
    assert [p["title"] for p in results["study"]] == ["Python Basics"]
    assert [p["title"] for p in results["tnp"]] == ["Python Developer"]


def test_search_wildcards_match_literally(client, make_user, login):
    make_user("student@example.com")
    login("student@example.com")
    _seed(client)

    r = client.get("/api/search?q=100%25")
    results = r.json["results"]
    assert [c["handle"] for c in results["communities"]] == ["pysoc"]
    # "Lab 1000" would match if % were a wildcard.
    assert results["events"] == []


def test_search_skips_inactive_communities(ctc_app, client, make_user, login):
    make_user("student@example.com")
    login("student@example.com")
    c = _seed(client)
    with session_scope(ctc_app) as s:
        s.get(Community, c["id"]).status = "rejected"

    r = client.get("/api/search?q=python")
    assert r.json["results"]["communities"] == []
    assert len(r.json["results"]["events"]) == 1


def test_search_caps_results_per_kind(client, make_user, login):
    make_user("student@example.com")
    login("student@example.com")
    for i in range(7):
        client.post("/api/communities", json={"name": f"Chess Club {i}", "handle": f"chess-{i}"})

    r = client.get("/api/search?q=chess")
    assert len(r.json["results"]["communities"]) == 5
