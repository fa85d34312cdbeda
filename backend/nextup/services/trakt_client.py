"""
trakt_client.py

Async Trakt API client. Thin by intent: no caching and no retries, every
non-success status surfaces as a CatalogError and callers decide whether to
abort or continue. Rate limits are respected by the callers (sequential sync,
batched fan-out), not here.
"""

import httpx
import logging
from typing import Any, Dict, Iterable, List, Optional

from nextup.core.config import settings
from nextup.schemas import CatalogEpisode, CatalogSeason, CatalogShow, Pagination, SearchPage, SearchResult, WatchedShow
from nextup.services.errors import UpstreamError

logger = logging.getLogger(__name__)


class CatalogError(UpstreamError):
    """Raised for any non-success Trakt response or network failure (status is None then)."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message, status=status)


class TraktClient:
    def __init__(self, token: Optional[str] = None, client_id: Optional[str] = None,
                 base_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.token = token
        self._client_id = client_id if client_id is not None else settings.trakt_client_id
        self._base_url = (base_url or settings.trakt_api_url).rstrip("/")
        # Injected clients (tests, shared pools) are never closed here
        self._http = http_client

    def _get_headers(self, require_auth: bool) -> Dict[str, str]:
        if not self._client_id:
            logger.error("Trakt client_id is missing (TRAKT_CLIENT_ID not configured)")
            raise CatalogError(None, "Trakt integration is not configured.")
        headers = {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": self._client_id,
            "User-Agent": settings.trakt_user_agent,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        elif require_auth:
            raise CatalogError(401, "Trakt account is not authorized. Please reauthorize your Trakt account.")
        return headers

    async def _request(self, method: str, endpoint: str, params: Optional[dict] = None,
                       data: Optional[dict] = None, require_auth: bool = False) -> httpx.Response:
        url = f"{self._base_url}{endpoint}"
        headers = self._get_headers(require_auth)
        try:
            if self._http is not None:
                resp = await self._http.request(method, url, headers=headers, params=params, json=data)
            else:
                async with httpx.AsyncClient(timeout=settings.trakt_timeout_seconds) as client:
                    resp = await client.request(method, url, headers=headers, params=params, json=data)
        except httpx.TimeoutException:
            logger.error(f"Timeout calling Trakt {method} {endpoint}")
            raise CatalogError(None, "Timed out waiting for Trakt API.")
        except httpx.RequestError as e:
            logger.error(f"Network error calling Trakt {method} {endpoint}: {e}")
            raise CatalogError(None, f"Network error connecting to Trakt API: {e}")

        if not resp.is_success:
            body = resp.text[:500] if resp.content else ""
            logger.warning(f"Trakt {method} {endpoint} returned {resp.status_code}: {body}")
            raise CatalogError(resp.status_code, f"Trakt API error {resp.status_code}: {body or resp.reason_phrase}")
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        # Some endpoints answer 204 No Content
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def fetch_show(self, external_id) -> CatalogShow:
        """Fetch a show by Trakt id, slug or IMDb id."""
        resp = await self._request("GET", f"/shows/{external_id}", params={"extended": "full,images"})
        return CatalogShow.model_validate(self._json(resp) or {})

    async def fetch_seasons(self, external_id, include_specials: bool = False) -> List[CatalogSeason]:
        """Fetch every season of a show with its episodes embedded."""
        params = {"extended": "episodes,images"}
        if not include_specials:
            params["specials"] = "false"
            params["count_specials"] = "false"
        resp = await self._request("GET", f"/shows/{external_id}/seasons", params=params)
        return [CatalogSeason.model_validate(s) for s in (self._json(resp) or [])]

    async def fetch_next_episode(self, external_id) -> Optional[CatalogEpisode]:
        """Next aired episode of a show, or None when nothing is scheduled."""
        try:
            resp = await self._request("GET", f"/shows/{external_id}/next_episode", params={"extended": "full"})
        except CatalogError as e:
            if e.status == 404:
                return None
            raise
        payload = self._json(resp)
        return CatalogEpisode.model_validate(payload) if payload else None

    async def fetch_episode(self, external_id, season: int, number: int) -> Optional[CatalogEpisode]:
        """One episode with full details and images; None when Trakt does not know it."""
        try:
            resp = await self._request(
                "GET", f"/shows/{external_id}/seasons/{season}/episodes/{number}",
                params={"extended": "full,images"},
            )
        except CatalogError as e:
            if e.status == 404:
                return None
            raise
        payload = self._json(resp)
        return CatalogEpisode.model_validate(payload) if payload else None

    async def fetch_watched_shows(self, page_size: int = 100, max_pages: int = 1000) -> List[WatchedShow]:
        """Fetch the authenticated user's whole watched-shows history.

        Pages until the advertised page count is reached, or an empty/short page
        is returned when Trakt does not send pagination headers.
        """
        collected: List[WatchedShow] = []
        page = 1
        per_page = max(1, page_size)
        while page <= max_pages:
            resp = await self._request(
                "GET",
                "/users/me/watched/shows",
                params={"extended": "full,images", "page": page, "limit": per_page},
                require_auth=True,
            )
            batch = self._json(resp) or []
            collected.extend(WatchedShow.model_validate(item) for item in batch)
            page_count = _int_header(resp, "X-Pagination-Page-Count")
            if not batch:
                break
            if page_count is not None:
                if page >= page_count:
                    break
            elif len(batch) < per_page:
                break
            page += 1
        logger.info(f"Fetched {len(collected)} watched shows from Trakt")
        return collected

    @staticmethod
    def _episodes_payload(episode_trakt_ids: Iterable[int]) -> dict:
        return {"episodes": [{"ids": {"trakt": int(tid)}} for tid in episode_trakt_ids]}

    async def push_mark(self, episode_trakt_ids: List[int]) -> None:
        """Add episodes to the user's Trakt history."""
        if not episode_trakt_ids:
            return
        await self._request("POST", "/sync/history", data=self._episodes_payload(episode_trakt_ids), require_auth=True)

    async def push_unmark(self, episode_trakt_ids: List[int]) -> None:
        """Remove episodes from the user's Trakt history."""
        if not episode_trakt_ids:
            return
        await self._request("POST", "/sync/history/remove", data=self._episodes_payload(episode_trakt_ids), require_auth=True)

    async def search(self, query: str, page: int = 1, page_size: int = 10) -> SearchPage:
        params = {"query": query, "extended": "full,images", "page": page, "limit": page_size}
        resp = await self._request("GET", "/search/show", params=params)
        results = [SearchResult.model_validate(r) for r in (self._json(resp) or []) if r.get("show")]
        pagination = Pagination(
            page=_int_header(resp, "X-Pagination-Page") or page,
            limit=_int_header(resp, "X-Pagination-Limit") or page_size,
            page_count=_int_header(resp, "X-Pagination-Page-Count") or 1,
            item_count=_int_header(resp, "X-Pagination-Item-Count") or len(results),
        )
        return SearchPage(results=results, pagination=pagination)


def _int_header(resp: httpx.Response, name: str) -> Optional[int]:
    value = resp.headers.get(name)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None
