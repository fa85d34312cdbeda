"""
watchlist.py

Read paths: show detail with per-episode watch state, and ordered list
queries. Ordering is a parameter of the query; results are built fresh for
every call.
"""
import logging
from typing import Callable, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from nextup import crud
from nextup.models import Episode, List as UserList, ListShow, Season, Show
from nextup.services.errors import NextUpError, NotFoundError, StoreError, ValidationError
from nextup.services.read_cache import ReadCache
from nextup.services.show_ingestion import ShowIngestion
from nextup.services.trakt_client import CatalogError, TraktClient
from nextup.utils.payload import episode_payload, episode_summary_from_catalog, progress_payload, show_payload

logger = logging.getLogger(__name__)

SORT_ORDERS = ("asc", "desc")


def _sort_columns():
    # Missing values sort as 0 / empty string
    return {
        "added_at": ListShow.added_at,
        "title": func.coalesce(Show.title, ""),
        "year": func.coalesce(Show.year, 0),
        "rating": func.coalesce(Show.rating, 0),
        "last_watched_at": Show.last_watched_at,
        "episodes_left": case(
            (ListShow.total_episodes - ListShow.watched_episodes < 0, 0),
            else_=ListShow.total_episodes - ListShow.watched_episodes,
        ),
    }


SORT_KEYS = tuple(_sort_columns())


def list_shows(db: Session, list_id, sort_by: str = "added_at", order: str = "desc",
               include_completed: bool = False) -> List[ListShow]:
    """Ordered list_shows rows of one list (show and next episode loaded)."""
    columns = _sort_columns()
    if sort_by not in columns:
        raise ValidationError(f"Unknown sort key '{sort_by}'; expected one of {', '.join(SORT_KEYS)}")
    order = (order or "").lower()
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order '{order}'; expected 'asc' or 'desc'")

    column = columns[sort_by]
    primary = column.asc() if order == "asc" else column.desc()
    if sort_by == "last_watched_at":
        # Never-watched shows count as the oldest
        primary = primary.nulls_first() if order == "asc" else primary.nulls_last()

    stmt = (
        select(ListShow)
        .join(Show, Show.id == ListShow.show_id)
        .where(ListShow.list_id == list_id)
        .options(selectinload(ListShow.show), selectinload(ListShow.next_episode))
        .order_by(primary, Show.title, ListShow.id)
    )
    if not include_completed:
        stmt = stmt.where(ListShow.is_completed.is_(False))
    return list(db.execute(stmt).scalars())


def watchlist_entry(list_show: ListShow) -> dict:
    entry = progress_payload(list_show)
    entry["show"] = show_payload(list_show.show)
    entry["next_episode"] = episode_payload(list_show.next_episode) if list_show.next_episode else None
    return entry


async def get_watchlist(db: Session, user_id, list_id, sort_by: str = "added_at", order: str = "desc",
                        include_completed: bool = False, cache: Optional[ReadCache] = None) -> List[dict]:
    list_uuid = crud.parse_uuid(list_id, "list_id")
    parts = (list_uuid, sort_by, order, int(bool(include_completed)))
    generation = await cache.generation(user_id) if cache is not None else None
    if generation is not None:
        cached = await cache.get(user_id, "watchlist", *parts, generation=generation)
        if cached is not None:
            return cached
    try:
        owned = db.get(UserList, list_uuid)
        if owned is None or owned.user_id != user_id:
            raise NotFoundError(f"List {list_uuid} not found")
        rows = [watchlist_entry(ls) for ls in list_shows(db, list_uuid, sort_by, order, include_completed)]
    except SQLAlchemyError as e:
        logger.error(f"[Watchlist] Query for list {list_uuid} failed: {e}")
        raise StoreError(f"Failed to load list: {e}") from e
    finally:
        db.rollback()
    if generation is not None:
        await cache.set(user_id, "watchlist", rows, *parts, generation=generation)
    return rows


def _detail_payload(db: Session, user_id, show: Show) -> dict:
    payload = show_payload(show)
    seasons = db.execute(
        select(Season).where(Season.show_id == show.id).order_by(Season.season_number)
        .options(selectinload(Season.episodes))
    ).scalars().all()
    episode_ids = [e.id for s in seasons for e in s.episodes]
    watched = crud.get_watched_map(db, user_id, episode_ids)

    payload["seasons"] = [
        {
            "id": str(season.id),
            "season_number": season.season_number,
            "title": season.title,
            "episode_count": season.episode_count,
            "image_poster": season.image_poster,
            "episodes": [
                episode_payload(e, watched.get(e.id))
                for e in sorted(season.episodes, key=lambda ep: ep.episode_number)
            ],
        }
        for season in seasons
    ]
    list_id = crud.get_default_list_id(db, user_id)
    list_show = crud.get_list_show(db, list_id, show.id) if list_id is not None else None
    payload["in_collection"] = list_show is not None
    payload["progress"] = progress_payload(list_show) if list_show is not None else None
    return payload


async def get_show_detail(db: Session, user_id, identifier, token: Optional[str] = None,
                          cache: Optional[ReadCache] = None,
                          catalog_factory: Optional[Callable[[Optional[str]], object]] = None) -> dict:
    """Show with seasons/episodes and the user's progress.

    Unknown shows are fetched from Trakt and ingested first when a token is
    available; otherwise NotFoundError.
    """
    key = str(identifier).strip()
    if not key:
        raise ValidationError("A show identifier is required")
    generation = await cache.generation(user_id) if cache is not None else None
    if generation is not None:
        cached = await cache.get(user_id, "show", key, generation=generation)
        if cached is not None:
            return cached

    try:
        show = crud.find_show(db, key)
        if show is None:
            db.rollback()
            if not token:
                raise NotFoundError(f"Show '{key}' not found")
            catalog = (catalog_factory or (lambda t: TraktClient(token=t)))(token)
            try:
                remote = await catalog.fetch_show(key)
            except CatalogError as e:
                if e.status == 404:
                    raise NotFoundError(f"Show '{key}' not found") from e
                raise
            seasons = await catalog.fetch_seasons(remote.ids.trakt or key)
            show_id = ShowIngestion(db).ingest(remote, seasons).show_id
            db.commit()
            show = db.get(Show, show_id)
        payload = _detail_payload(db, user_id, show)
    except NextUpError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[ShowDetail] Loading '{key}' failed: {e}")
        raise StoreError(f"Failed to load show: {e}") from e
    db.rollback()

    if generation is not None:
        await cache.set(user_id, "show", payload, key, generation=generation)
    return payload


async def get_episode_detail(db: Session, user_id, identifier, season_number: int, episode_number: int,
                             token: Optional[str] = None,
                             catalog_factory: Optional[Callable[[Optional[str]], object]] = None) -> dict:
    """One episode with the user's watch state.

    Stored episodes come from the database. Anything else is looked up on
    Trakt when a token is available and returned without being stored.
    """
    key = str(identifier).strip()
    if not key:
        raise ValidationError("A show identifier is required")
    label = f"S{season_number:02d}E{episode_number:02d}"

    try:
        show = crud.find_show(db, key)
        episode_id = crud.get_episode_id(db, show.id, season_number, episode_number) if show is not None else None
        if episode_id is not None:
            watched = crud.get_watched_map(db, user_id, [episode_id])
            payload = episode_payload(db.get(Episode, episode_id), watched.get(episode_id))
            payload["show"] = show_payload(show)
            return payload
        show_ref = show.trakt_id if show is not None else key
        show_summary = show_payload(show) if show is not None else None
    except SQLAlchemyError as e:
        logger.error(f"[EpisodeDetail] Loading {label} of '{key}' failed: {e}")
        raise StoreError(f"Failed to load episode: {e}") from e
    finally:
        db.rollback()

    if not token:
        raise NotFoundError(f"Episode {label} of '{key}' not found")
    catalog = (catalog_factory or (lambda t: TraktClient(token=t)))(token)
    remote = await catalog.fetch_episode(show_ref, season_number, episode_number)
    if remote is None:
        raise NotFoundError(f"Episode {label} of '{key}' not found")
    payload = episode_summary_from_catalog(remote)
    payload["watched"] = False
    payload["show"] = show_summary
    return payload
