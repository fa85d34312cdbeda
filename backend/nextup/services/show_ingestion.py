"""
show_ingestion.py

Normalizes one Trakt show and its season/episode tree into the shows, seasons
and episodes tables.

Order is fixed: the show first (its id is the parent of everything else), then
each non-special season, then that season's episodes. A failed show upsert
aborts the whole ingestion; a failed season or episode is rolled back to its
savepoint, recorded and skipped. Re-ingesting the same payload only refreshes
metadata because every upsert is keyed by Trakt id.

Transactions are left to the caller: nothing here commits.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextup import crud
from nextup.schemas import CatalogSeason, CatalogShow
from nextup.services.batch import BatchResult
from nextup.services.errors import NextUpError, StoreError

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    show_id: uuid.UUID
    seasons: BatchResult = field(default_factory=BatchResult)
    episodes: BatchResult = field(default_factory=BatchResult)
    skipped_specials: int = 0


class ShowIngestion:
    def __init__(self, db: Session):
        self.db = db

    def ingest(self, show: CatalogShow, seasons: Iterable[CatalogSeason],
               last_watched_at: Optional[datetime] = None) -> IngestionResult:
        try:
            show_id = crud.upsert_show(self.db, show, last_watched_at)
        except SQLAlchemyError as e:
            logger.error(f"[Ingestion] Show upsert failed for trakt_id={show.ids.trakt}: {e}")
            raise StoreError(f"Failed to store show '{show.title}': {e}") from e
        logger.debug(f"[Ingestion] Upserted show {show.title} ({show.ids.trakt}) -> {show_id}")
        return self.ingest_seasons(show_id, seasons)

    def ingest_seasons(self, show_id: uuid.UUID, seasons: Iterable[CatalogSeason]) -> IngestionResult:
        """Upsert the season tree of a show that already has a row."""
        result = IngestionResult(show_id=show_id)
        for season in seasons:
            if season.is_special:
                result.skipped_specials += 1
                continue
            try:
                with self.db.begin_nested():
                    season_id = crud.upsert_season(self.db, show_id, season)
            except (SQLAlchemyError, NextUpError) as e:
                logger.warning(f"[Ingestion] Skipping season {season.number} of show {show_id}: {e}")
                result.seasons.record_failure(season.number, e)
                continue
            result.seasons.record_success(season.number)

            for episode in season.episodes:
                label = f"S{season.number:02d}E{episode.number:02d}"
                try:
                    with self.db.begin_nested():
                        crud.upsert_episode(self.db, show_id, season_id, season.number, episode)
                except (SQLAlchemyError, NextUpError) as e:
                    logger.warning(f"[Ingestion] Skipping episode {label} of show {show_id}: {e}")
                    result.episodes.record_failure(label, e)
                    continue
                result.episodes.record_success(label)

        logger.info(
            f"[Ingestion] Show {show_id}: {len(result.seasons.succeeded)} seasons, "
            f"{len(result.episodes.succeeded)} episodes stored, "
            f"{len(result.seasons.failed) + len(result.episodes.failed)} failures, "
            f"{result.skipped_specials} specials skipped"
        )
        return result
