import asyncio
import json

import httpx
import pytest

from nextup.services.errors import UpstreamError
from nextup.services.trakt_client import CatalogError, TraktClient

from helpers import season_dict, show_dict


def _client(handler, token="user-token"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TraktClient(token=token, client_id="cid", base_url="https://trakt.test", http_client=http)


def test_fetch_show_sends_trakt_headers_and_parses_defaults():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        payload = show_dict(1)
        payload.update({"runtime": None, "genres": None, "images": None})
        return httpx.Response(200, json=payload)

    show = asyncio.run(_client(handler).fetch_show("show-1"))

    assert seen["url"].startswith("https://trakt.test/shows/show-1")
    assert seen["headers"]["trakt-api-version"] == "2"
    assert seen["headers"]["trakt-api-key"] == "cid"
    assert seen["headers"]["authorization"] == "Bearer user-token"
    assert show.ids.trakt == 1
    assert show.runtime == 0
    assert show.genres == []
    assert show.images.first("poster") is None


def test_fetch_seasons_excludes_specials_by_default():
    params = {}

    def handler(request):
        params.update(request.url.params)
        return httpx.Response(200, json=[season_dict(1, 1, 2)])

    seasons = asyncio.run(_client(handler).fetch_seasons(1))
    assert params["specials"] == "false"
    assert params["extended"] == "episodes,images"
    assert [e.number for e in seasons[0].episodes] == [1, 2]


def test_non_success_status_raises_catalog_error():
    client = _client(lambda request: httpx.Response(500, text="upstream exploded"))
    with pytest.raises(CatalogError) as excinfo:
        asyncio.run(client.fetch_show(1))
    assert excinfo.value.status == 500
    assert isinstance(excinfo.value, UpstreamError)
    assert "upstream exploded" in excinfo.value.message


def test_network_failure_has_no_status():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CatalogError) as excinfo:
        asyncio.run(_client(handler).fetch_show(1))
    assert excinfo.value.status is None


def test_next_episode_404_is_none():
    client = _client(lambda request: httpx.Response(404))
    assert asyncio.run(client.fetch_next_episode(1)) is None

    client = _client(lambda request: httpx.Response(204))
    assert asyncio.run(client.fetch_next_episode(1)) is None


def test_watched_shows_follows_page_count():
    pages = []

    def handler(request):
        page = int(request.url.params["page"])
        pages.append(page)
        item = {"plays": 1, "show": show_dict(page), "seasons": [{"number": 1, "episodes": [{"number": 1}]}]}
        return httpx.Response(200, json=[item], headers={"X-Pagination-Page-Count": "3"})

    watched = asyncio.run(_client(handler).fetch_watched_shows(page_size=1))
    assert pages == [1, 2, 3]
    assert [w.show.ids.trakt for w in watched] == [1, 2, 3]


def test_watched_shows_stops_on_short_page_without_headers():
    calls = []

    def handler(request):
        calls.append(request.url.params["page"])
        return httpx.Response(200, json=[{"show": show_dict(1)}])

    asyncio.run(_client(handler).fetch_watched_shows(page_size=10))
    assert calls == ["1"]


def test_push_mark_and_unmark_payloads():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(201, json={"added": {"episodes": 2}})

    client = _client(handler)
    asyncio.run(client.push_mark([101, 102]))
    asyncio.run(client.push_unmark([101]))
    asyncio.run(client.push_mark([]))

    assert requests == [
        ("POST", "/sync/history", {"episodes": [{"ids": {"trakt": 101}}, {"ids": {"trakt": 102}}]}),
        ("POST", "/sync/history/remove", {"episodes": [{"ids": {"trakt": 101}}]}),
    ]


def test_authenticated_call_without_token_fails_before_request():
    calls = []
    client = _client(lambda request: calls.append(request) or httpx.Response(200, json=[]), token=None)
    with pytest.raises(CatalogError) as excinfo:
        asyncio.run(client.push_mark([1]))
    assert excinfo.value.status == 401
    assert calls == []


def test_missing_client_id_is_an_upstream_error():
    client = TraktClient(token="t", client_id="", base_url="https://trakt.test")
    with pytest.raises(CatalogError):
        asyncio.run(client.fetch_show(1))


def test_search_reads_pagination_headers():
    def handler(request):
        assert request.url.params["query"] == "office"
        body = [{"type": "show", "score": 12.5, "show": show_dict(1, title="The Office")}, {"type": "show"}]
        headers = {
            "X-Pagination-Page": "2",
            "X-Pagination-Limit": "1",
            "X-Pagination-Page-Count": "7",
            "X-Pagination-Item-Count": "7",
        }
        return httpx.Response(200, json=body, headers=headers)

    page = asyncio.run(_client(handler).search("office", page=2, page_size=1))
    assert [r.show.title for r in page.results] == ["The Office"]
    assert page.pagination.page_count == 7
    assert page.pagination.item_count == 7
    assert page.pagination.page == 2


def test_fetch_episode_path_and_missing_episode():
    seen = []

    def handler(request):
        seen.append((request.url.path, request.url.params["extended"]))
        if request.url.path.endswith("/episodes/9"):
            return httpx.Response(404)
        return httpx.Response(200, json=season_dict(1, 2, 3)["episodes"][2])

    client = _client(handler)
    episode = asyncio.run(client.fetch_episode("show-1", 2, 3))
    assert (episode.season, episode.number, episode.ids.trakt) == (2, 3, 10203)
    assert asyncio.run(client.fetch_episode("show-1", 2, 9)) is None
    assert seen[0] == ("/shows/show-1/seasons/2/episodes/3", "full,images")
