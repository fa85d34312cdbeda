"""
upcoming.py

Collection-wide reads that fan out to Trakt. Requests go out in small
concurrent batches; a batch is awaited in full before the next one starts.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextup import crud
from nextup.core.config import settings
from nextup.models import ListShow, Show
from nextup.services.batch import BatchResult
from nextup.services.errors import NextUpError, NotFoundError, StoreError, ValidationError
from nextup.services.read_cache import ReadCache
from nextup.services.show_ingestion import ShowIngestion
from nextup.services.trakt_client import TraktClient
from nextup.utils.payload import episode_summary_from_catalog, show_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_in_batches(items: Iterable[T], fn: Callable[[T], Awaitable[Any]], batch_size: int,
                            return_exceptions: bool = True) -> List[Any]:
    """Run ``fn`` over items, at most ``batch_size`` at a time; results keep input order."""
    items = list(items)
    size = max(1, int(batch_size))
    results: List[Any] = []
    for start in range(0, len(items), size):
        chunk = items[start:start + size]
        results.extend(await asyncio.gather(*(fn(item) for item in chunk), return_exceptions=return_exceptions))
    return results


def _collection_shows(db: Session, user_id) -> List[Show]:
    list_id = crud.get_default_list_id(db, user_id)
    if list_id is None:
        raise NotFoundError(f"User {user_id} has no default list")
    return list(db.execute(
        select(Show).join(ListShow, ListShow.show_id == Show.id)
        .where(ListShow.list_id == list_id)
        .order_by(Show.title)
    ).scalars())


def _catalog(token: Optional[str], catalog_factory):
    return (catalog_factory or (lambda t: TraktClient(token=t)))(token)


async def get_upcoming_episodes(db: Session, user_id, token: Optional[str] = None,
                                catalog_factory=None) -> List[dict]:
    """Next aired episode of every show in the default list, soonest first."""
    try:
        shows = [(s.trakt_id, show_payload(s)) for s in _collection_shows(db, user_id)]
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load collection: {e}") from e
    finally:
        db.rollback()

    catalog = _catalog(token, catalog_factory)

    async def _next(entry):
        trakt_id, _ = entry
        return await catalog.fetch_next_episode(trakt_id)

    results = await gather_in_batches(shows, _next, settings.next_episode_batch_size)

    upcoming = []
    for (trakt_id, summary), result in zip(shows, results):
        if isinstance(result, BaseException):
            logger.warning(f"[Upcoming] next_episode failed for show {trakt_id}: {result}")
            continue
        if result is None:
            continue
        upcoming.append({
            "show": summary,
            "episode": episode_summary_from_catalog(result),
        })
    upcoming.sort(key=lambda item: item["episode"]["first_aired"] or "9999")
    return upcoming


async def refresh_collection(db: Session, user_id, token: Optional[str],
                             catalog_factory=None, cache: Optional[ReadCache] = None) -> BatchResult:
    """Re-fetch the season tree of every collection show and recompute its aggregate."""
    if not token:
        raise ValidationError("A Trakt token is required to refresh the collection")
    try:
        list_id = crud.get_default_list_id(db, user_id)
        shows = [(s.id, s.trakt_id, s.title) for s in _collection_shows(db, user_id)]
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load collection: {e}") from e
    finally:
        db.rollback()

    catalog = _catalog(token, catalog_factory)

    async def _seasons(entry):
        _, trakt_id, _ = entry
        return await catalog.fetch_seasons(trakt_id)

    fetched = await gather_in_batches(shows, _seasons, settings.season_fetch_batch_size)

    result = BatchResult()
    ingestion = ShowIngestion(db)
    for (show_id, trakt_id, title), seasons in zip(shows, fetched):
        label = title or trakt_id
        if isinstance(seasons, BaseException):
            logger.warning(f"[Refresh] Season fetch failed for '{label}': {seasons}")
            result.record_failure(label, seasons)
            continue
        try:
            ingestion.ingest_seasons(show_id, seasons)
            crud.refresh_list_show(db, list_id, show_id, user_id)
            db.commit()
        except (NextUpError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning(f"[Refresh] Could not refresh '{label}': {e}")
            result.record_failure(label, e)
            continue
        result.record_success(label)

    if cache is not None:
        await cache.invalidate_user(user_id)
    logger.info(f"[Refresh] User {user_id}: {len(result.succeeded)} refreshed, {len(result.failed)} failed")
    return result
