import asyncio

import pytest
from fastapi.testclient import TestClient

from nextup import crud
from nextup.api.deps import get_catalog_factory, get_read_cache
from nextup.core.database import get_db
from nextup.main import app
from nextup.services.collection import CollectionManager
from nextup.services.read_cache import ReadCache

from helpers import build_show, seed_show, seed_user, watched_dict


@pytest.fixture
def client(session_factory, catalog, fake_redis):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_read_cache] = lambda: ReadCache(client=fake_redis, enabled=True)
    app.dependency_overrides[get_catalog_factory] = lambda: catalog.factory
    # No context manager: startup (schema creation against the real engine) is skipped
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def account(db):
    user_id, list_id = seed_user(db)
    show_id = seed_show(db, trakt_id=1, seasons={1: 2})
    asyncio.run(CollectionManager(db).add_show(user_id, show_id))
    episodes = crud.get_episode_index(db, show_id)
    # Request sessions share the one in-memory connection; leave no transaction open
    db.rollback()
    return {
        "headers": {"X-User-Id": str(user_id), "X-Trakt-Token": "header-token"},
        "user_id": user_id,
        "list_id": list_id,
        "show_id": show_id,
        "episodes": episodes,
    }


def test_requests_without_user_are_unauthorized(client):
    assert client.get("/api/lists/default").status_code == 401
    assert client.get("/api/lists/default", headers={"X-User-Id": "nope"}).status_code == 401


def test_mark_episodes(client, account, catalog):
    body = {
        "show_id": str(account["show_id"]),
        "episode_ids": [str(account["episodes"][(1, 1)])],
        "action": "mark",
    }
    resp = client.post("/api/episodes/watched", json=body, headers=account["headers"])

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["changed"] == 1
    assert data["progress"]["watched_episodes"] == 1
    assert data["progress"]["next_episode_id"] == str(account["episodes"][(1, 2)])
    assert catalog.pushed == [("mark", [10101])]


def test_stored_token_is_used_without_header(client, account, catalog):
    headers = {"X-User-Id": str(account["user_id"])}
    body = {"show_id": str(account["show_id"]), "episode_ids": [str(account["episodes"][(1, 2)])], "action": "mark"}
    assert client.post("/api/episodes/watched", json=body, headers=headers).status_code == 200


@pytest.mark.parametrize("body,status", [
    ({"action": "mark", "episode_ids": []}, 400),
    ({"action": "toggle", "episode_ids": ["x"]}, 400),
    ({"action": "mark", "episode_ids": ["not-a-uuid"]}, 400),
])
def test_invalid_mark_requests(client, account, body, status):
    body = dict(body, show_id=str(account["show_id"]))
    resp = client.post("/api/episodes/watched", json=body, headers=account["headers"])
    assert resp.status_code == status
    assert "error" in resp.json()


def test_unknown_show_is_404(client, account):
    body = {"show_id": "00000000-0000-0000-0000-000000000000",
            "episode_ids": [str(account["episodes"][(1, 1)])], "action": "mark"}
    resp = client.post("/api/episodes/watched", json=body, headers=account["headers"])
    assert resp.status_code == 404


def test_upstream_failure_is_502_after_local_commit(client, account, catalog, db):
    catalog.fail_push = True
    body = {"show_id": str(account["show_id"]),
            "episode_ids": [str(account["episodes"][(1, 1)])], "action": "mark"}
    resp = client.post("/api/episodes/watched", json=body, headers=account["headers"])

    assert resp.status_code == 502
    assert resp.json()["local_state_committed"] is True
    row = crud.get_list_show(db, account["list_id"], account["show_id"])
    assert row.watched_episodes == 1


def test_collection_add_and_remove(client, account):
    headers = account["headers"]
    body = {"show_id": str(account["show_id"]), "action": "remove"}
    assert client.post("/api/collection", json=body, headers=headers).json()["success"] is True

    shows = client.get(f"/api/lists/{account['list_id']}/shows", headers=headers).json()["shows"]
    assert shows == []

    body["action"] = "add"
    assert client.post("/api/collection", json=body, headers=headers).json()["success"] is True
    shows = client.get(f"/api/lists/{account['list_id']}/shows", headers=headers).json()["shows"]
    assert [s["show"]["trakt_id"] for s in shows] == [1]

    body["action"] = "archive"
    assert client.post("/api/collection", json=body, headers=headers).status_code == 400


def test_default_list_and_sort_validation(client, account):
    headers = account["headers"]
    assert client.get("/api/lists/default", headers=headers).json() == {"list_id": str(account["list_id"])}
    resp = client.get(f"/api/lists/{account['list_id']}/shows?sort_by=colour", headers=headers)
    assert resp.status_code == 400


def test_show_detail(client, account):
    resp = client.get("/api/shows/show-1", headers=account["headers"])
    assert resp.status_code == 200
    assert resp.json()["in_collection"] is True
    assert client.get("/api/shows/unknown-slug", headers={"X-User-Id": str(account["user_id"]),
                                                          "X-Trakt-Token": "t"}).status_code == 404


def test_sync_endpoint_reports_counts(client, account, catalog):
    show, seasons = build_show(1, seasons={1: 2})
    catalog.add_show(show, seasons)
    catalog.watched.append(watched_dict(show, {1: [1, 2]}))
    broken, broken_seasons = build_show(2)
    catalog.add_show(broken, broken_seasons)
    catalog.watched.append(watched_dict(broken, {1: [1]}))
    catalog.fail_seasons_for = {"2"}

    resp = client.post("/api/sync", headers=account["headers"])

    assert resp.status_code == 200
    data = resp.json()
    assert data["synced"] == 1
    assert [f["show"] for f in data["failed"]] == ["Show 2"]


def test_search_and_stats(client, account, catalog):
    show, _ = build_show(9, title="Found")
    catalog.search_results = [show]
    resp = client.get("/api/search?query=found", headers=account["headers"])
    assert resp.json()["results"][0]["show"]["title"] == "Found"

    stats = client.get("/api/stats", headers=account["headers"]).json()
    assert stats["episodes_watched"] == 0


def test_episode_detail_route(client, account):
    resp = client.get("/api/shows/show-1/seasons/1/episodes/2", headers=account["headers"])
    assert resp.status_code == 200
    assert resp.json()["id"] == str(account["episodes"][(1, 2)])
    assert client.get("/api/shows/show-1/seasons/1/episodes/9", headers=account["headers"]).status_code == 404
