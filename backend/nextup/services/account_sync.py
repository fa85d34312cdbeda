"""
account_sync.py

Full-account import: re-derives local watch state from the user's Trakt
watched-shows history.

Shows are processed strictly one at a time with a fixed pause between them so
the Trakt rate limit is never hit. Each show runs in its own transaction:
fetch seasons, ingest, overwrite the user's watch set for that show with the
upstream one, refresh the list aggregate when the show is in the default list.
A failing show is rolled back, recorded and skipped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextup import crud
from nextup.core.config import settings
from nextup.schemas import WatchedShow
from nextup.services.batch import BatchResult
from nextup.services.errors import NextUpError, NotFoundError, UpstreamError, ValidationError
from nextup.services.read_cache import ReadCache
from nextup.services.show_ingestion import ShowIngestion
from nextup.services.trakt_client import TraktClient

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    message: str
    shows: BatchResult = field(default_factory=BatchResult)
    episodes_added: int = 0
    episodes_removed: int = 0

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "synced": len(self.shows.succeeded),
            "failed": [{"show": str(item), "error": error} for item, error in self.shows.failed],
            "episodes_added": self.episodes_added,
            "episodes_removed": self.episodes_removed,
        }


class AccountSync:
    def __init__(self, db: Session, catalog_factory: Optional[Callable[[str], object]] = None,
                 cache: Optional[ReadCache] = None, delay_ms: Optional[int] = None):
        self.db = db
        self._catalog_factory = catalog_factory or (lambda token: TraktClient(token=token))
        self.cache = cache
        self.delay_ms = settings.sync_inter_show_delay_ms if delay_ms is None else delay_ms

    async def sync(self, user_id, token: Optional[str]) -> SyncReport:
        if not token:
            raise ValidationError("A Trakt token is required to sync the account")
        list_id = crud.get_default_list_id(self.db, user_id)
        self.db.rollback()  # end the read transaction before awaiting Trakt
        if list_id is None:
            raise NotFoundError(f"User {user_id} has no default list")

        catalog = self._catalog_factory(token)
        try:
            watched = await catalog.fetch_watched_shows(page_size=settings.sync_page_size)
        except UpstreamError as e:
            logger.error(f"[AccountSync] Could not fetch watched shows for user {user_id}: {e.message}")
            raise

        report = SyncReport(message="")
        logger.info(f"[AccountSync] Syncing {len(watched)} shows for user {user_id}")
        for index, entry in enumerate(watched):
            if index and self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)
            label = entry.show.title or entry.show.ids.slug or entry.show.ids.trakt
            try:
                added, removed = await self._sync_show(catalog, user_id, list_id, entry)
            except (NextUpError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.warning(f"[AccountSync] Show '{label}' failed, continuing: {e}")
                report.shows.record_failure(label, e)
                continue
            report.shows.record_success(label)
            report.episodes_added += added
            report.episodes_removed += removed

        if self.cache is not None:
            await self.cache.invalidate_user(user_id)

        report.message = (
            f"Synced {len(report.shows.succeeded)} of {len(watched)} shows"
            + (f" ({len(report.shows.failed)} failed)" if report.shows.failed else "")
        )
        logger.info(f"[AccountSync] User {user_id}: {report.message}")
        return report

    async def _sync_show(self, catalog, user_id, list_id, entry: WatchedShow):
        external_id = entry.show.ids.trakt or entry.show.ids.slug
        if external_id is None:
            raise ValidationError("Watched show has no Trakt id")
        seasons = await catalog.fetch_seasons(external_id)

        # Everything below is synchronous: one transaction per show, never held across an await
        ingestion = ShowIngestion(self.db).ingest(entry.show, seasons, last_watched_at=entry.last_watched_at)
        show_id = ingestion.show_id

        index = crud.get_episode_index(self.db, show_id)
        upstream: Dict = {}
        unknown = 0
        for season in entry.seasons:
            if season.number == 0:
                continue
            for episode in season.episodes:
                episode_id = index.get((season.number, episode.number))
                if episode_id is None:
                    unknown += 1
                    continue
                upstream[episode_id] = episode.last_watched_at
        if unknown:
            logger.debug(f"[AccountSync] {unknown} watched episodes of show {show_id} are not stored locally")

        added, removed = crud.replace_show_watch_set(self.db, user_id, show_id, upstream)
        crud.refresh_list_show(self.db, list_id, show_id, user_id)
        self.db.commit()
        return added, removed
