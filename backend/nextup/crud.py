"""
crud.py

Relational store adapter. Every function works on the caller's Session and
leaves commit/rollback to the caller so a service can group several steps into
one transaction. Upserts use the dialect's INSERT .. ON CONFLICT (PostgreSQL in
production, SQLite in tests).
"""
from sqlalchemy.orm import Session
from sqlalchemy import select, update, delete, func, case, exists, and_, or_, null
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from datetime import datetime
import logging
import uuid

from . import models
from .models import Episode, List as UserList, ListShow, Season, Show, User, UserEpisode
from .schemas import CatalogEpisode, CatalogSeason, CatalogShow
from .services.errors import StoreError, ValidationError
from .utils.timezone import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "Collection"


def _insert(db: Session, table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise StoreError(f"Upserts are not supported on the '{dialect}' dialect")


def _join(values: Sequence[str]) -> Optional[str]:
    return ",".join(values) if values else None


def parse_uuid(value, field: str = "id") -> uuid.UUID:
    """Parse a UUID from request input, raising ValidationError when malformed."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid {field}: {value!r}")


# --- Users & lists ----------------------------------------------------------

def create_user(db: Session, email: str, trakt_token: Optional[str] = None) -> User:
    """Create a user together with the default list every user must own."""
    user = User(email=email, trakt_token=trakt_token)
    db.add(user)
    db.flush()
    db.add(UserList(user_id=user.id, name=DEFAULT_LIST_NAME, is_default=True))
    db.flush()
    logger.info(f"Created user {user.id} with default list")
    return user


def get_user(db: Session, user_id) -> Optional[User]:
    return db.get(User, user_id)


def get_default_list_id(db: Session, user_id) -> Optional[uuid.UUID]:
    return db.execute(
        select(UserList.id).where(UserList.user_id == user_id, UserList.is_default.is_(True)).limit(1)
    ).scalar_one_or_none()


def get_list(db: Session, list_id) -> Optional[UserList]:
    return db.get(UserList, list_id)


# --- Shows / seasons / episodes ---------------------------------------------

def _show_values(show: CatalogShow, last_watched_at: Optional[datetime]) -> dict:
    ids = show.ids
    if ids.trakt is None:
        raise ValidationError(f"Show '{show.title}' has no Trakt id")
    images = show.images
    return {
        "trakt_id": ids.trakt,
        "slug_id": ids.slug or str(ids.trakt),
        "tvdb_id": ids.tvdb,
        "imdb_id": ids.imdb,
        "tmdb_id": ids.tmdb,
        "last_watched_at": ensure_utc(last_watched_at),
        "title": show.title,
        "year": show.year,
        "tagline": show.tagline,
        "overview": show.overview,
        "first_aired": ensure_utc(show.first_aired),
        "airs_day": show.airs.day,
        "airs_time": show.airs.time,
        "airs_timezone": show.airs.timezone,
        "runtime": show.runtime,
        "country": show.country,
        "status": show.status,
        "rating": show.rating,
        "votes": show.votes,
        "trailer": show.trailer,
        "homepage": show.homepage,
        "network": show.network,
        "updated_at": ensure_utc(show.updated_at),
        "language": show.language,
        "genres": _join(show.genres),
        "subgenres": _join(show.subgenres),
        "aired_episodes": show.aired_episodes,
        "image_fanart": images.first("fanart"),
        "image_poster": images.first("poster"),
        "image_logo": images.first("logo"),
        "image_clearart": images.first("clearart"),
        "image_banner": images.first("banner"),
        "image_thumb": images.first("thumb"),
    }


def upsert_show(db: Session, show: CatalogShow, last_watched_at: Optional[datetime] = None) -> uuid.UUID:
    """Insert or refresh a show keyed by its Trakt id; returns the canonical row id."""
    values = _show_values(show, last_watched_at)
    table = Show.__table__
    stmt = _insert(db, table).values(id=uuid.uuid4(), created_at=utc_now(), **values)
    set_ = {k: stmt.excluded[k] for k in values if k != "trakt_id"}
    # A lookup without watch context must not erase the last known watch time
    set_["last_watched_at"] = func.coalesce(stmt.excluded.last_watched_at, table.c.last_watched_at)
    stmt = stmt.on_conflict_do_update(index_elements=[table.c.trakt_id], set_=set_).returning(table.c.id)
    return db.execute(stmt).scalar_one()


def upsert_season(db: Session, show_id, season: CatalogSeason) -> uuid.UUID:
    if season.ids.trakt is None:
        raise ValidationError(f"Season {season.number} has no Trakt id")
    values = {
        "tmdb_id": season.ids.tmdb,
        "tvdb_id": season.ids.tvdb,
        "trakt_id": season.ids.trakt,
        "show_id": show_id,
        "season_number": season.number,
        "title": season.title,
        "episode_count": season.episode_count,
        "aired_episodes": season.aired_episodes,
        "votes": season.votes,
        "rating": season.rating,
        "image_thumb": season.images.first("thumb"),
        "image_poster": season.images.first("poster"),
        "overview": season.overview,
        "updated_at": ensure_utc(season.updated_at),
        "first_aired": ensure_utc(season.first_aired),
    }
    table = Season.__table__
    stmt = _insert(db, table).values(id=uuid.uuid4(), **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.trakt_id],
        set_={k: stmt.excluded[k] for k in values if k != "trakt_id"},
    ).returning(table.c.id)
    return db.execute(stmt).scalar_one()


def upsert_episode(db: Session, show_id, season_id, season_number: int, episode: CatalogEpisode) -> uuid.UUID:
    if episode.ids.trakt is None:
        raise ValidationError(f"Episode S{season_number}E{episode.number} has no Trakt id")
    values = {
        "show_id": show_id,
        "season_id": season_id,
        "trakt_id": episode.ids.trakt,
        "imdb_id": episode.ids.imdb,
        "tmdb_id": episode.ids.tmdb,
        "tvdb_id": episode.ids.tvdb,
        "title": episode.title,
        "votes": episode.votes,
        "image_screenshot": episode.images.first("screenshot"),
        "episode_number": episode.number,
        "rating": episode.rating,
        "season_number": episode.season if episode.season is not None else season_number,
        "runtime": episode.runtime,
        "overview": episode.overview,
        "updated_at": ensure_utc(episode.updated_at),
        "first_aired": ensure_utc(episode.first_aired),
        "episode_type": episode.episode_type,
    }
    table = Episode.__table__
    stmt = _insert(db, table).values(id=uuid.uuid4(), **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.trakt_id],
        set_={k: stmt.excluded[k] for k in values if k != "trakt_id"},
    ).returning(table.c.id)
    return db.execute(stmt).scalar_one()


def upsert_seasons_and_episodes(db: Session, show_id, seasons: Iterable[CatalogSeason]) -> int:
    """Upsert a full season tree without special-season filtering. Returns episodes written."""
    written = 0
    for season in seasons:
        season_id = upsert_season(db, show_id, season)
        for episode in season.episodes:
            upsert_episode(db, show_id, season_id, season.number, episode)
            written += 1
    return written


def _classify_identifier(identifier) -> Tuple[Optional[int], Optional[str]]:
    """Split an identifier into (numeric, text); exactly one side is set for usable input."""
    if identifier is None or isinstance(identifier, bool):
        return None, None
    if isinstance(identifier, int):
        return identifier, None
    text = str(identifier).strip()
    if not text:
        return None, None
    if text.isdigit():
        return int(text), None
    return None, text


def find_show_by_external_identifiers(db: Session, primary=None, alternates: Iterable = ()) -> Optional[Show]:
    """Resolve a show by its primary external id, then by any alternate id.

    Numbers are only compared with integer columns (trakt/tvdb/tmdb) and strings
    only with string columns (slug/imdb) so an IMDb id never matches a Trakt id.
    """
    num, text = _classify_identifier(primary)
    primary_clause = None
    if num is not None:
        primary_clause = Show.trakt_id == num
    elif text is not None:
        primary_clause = Show.slug_id == text
    if primary_clause is not None:
        show = db.execute(select(Show).where(primary_clause).limit(1)).scalars().first()
        if show:
            return show

    clauses = []
    for identifier in alternates:
        num, text = _classify_identifier(identifier)
        if num is not None:
            clauses.extend([Show.trakt_id == num, Show.tvdb_id == num, Show.tmdb_id == num])
        elif text is not None:
            clauses.extend([Show.slug_id == text, Show.imdb_id == text])
    if not clauses:
        return None
    return db.execute(select(Show).where(or_(*clauses)).order_by(Show.created_at).limit(1)).scalars().first()


def find_show(db: Session, identifier) -> Optional[Show]:
    """Resolve an internal UUID, a Trakt id/slug, or an alternate catalog id."""
    if isinstance(identifier, uuid.UUID):
        return db.get(Show, identifier)
    try:
        return db.get(Show, uuid.UUID(str(identifier)))
    except ValueError:
        pass
    return find_show_by_external_identifiers(db, primary=identifier, alternates=[identifier])


def get_episode_id(db: Session, show_id, season_number: int, episode_number: int) -> Optional[uuid.UUID]:
    return db.execute(
        select(Episode.id).where(
            Episode.show_id == show_id,
            Episode.season_number == season_number,
            Episode.episode_number == episode_number,
        )
    ).scalar_one_or_none()


def get_show_episodes(db: Session, show_id, episode_ids: Iterable) -> List[Episode]:
    ids = list(episode_ids)
    if not ids:
        return []
    return list(db.execute(
        select(Episode).where(Episode.show_id == show_id, Episode.id.in_(ids))
    ).scalars())


# --- Progress math ------------------------------------------------------------

def _special_season_clause():
    return exists().where(
        Season.id == Episode.season_id,
        Season.title.is_not(None),
        Season.title.ilike("%special%"),
    )


def progress_episode_filter():
    """Episodes that count toward progress: not season 0, not in a season titled like "Specials"."""
    return and_(Episode.season_number > 0, ~_special_season_clause())


def non_special_episodes(show_id):
    return and_(Episode.show_id == show_id, progress_episode_filter())


def _next_episode_select(user_id, show_id):
    watched = select(UserEpisode.id).where(
        UserEpisode.user_id == user_id,
        UserEpisode.episode_id == Episode.id,
    )
    return (
        select(Episode.id)
        .where(non_special_episodes(show_id), ~watched.exists())
        .order_by(Episode.season_number, Episode.episode_number)
        .limit(1)
    )


def get_next_unwatched_episode_id(db: Session, user_id, show_id) -> Optional[uuid.UUID]:
    return db.execute(_next_episode_select(user_id, show_id)).scalar_one_or_none()


def compute_list_show_aggregate(db: Session, user_id, show_id) -> dict:
    """Compute the list_shows progress fields from scratch out of user_episodes."""
    total = db.execute(select(func.count(Episode.id)).where(non_special_episodes(show_id))).scalar_one()
    watched_at = db.execute(
        select(UserEpisode.watched_at)
        .join(Episode, Episode.id == UserEpisode.episode_id)
        .where(UserEpisode.user_id == user_id, non_special_episodes(show_id))
    ).scalars().all()
    watched = len(watched_at)
    is_completed = watched >= total
    completed_at = None
    if is_completed:
        stamps = [ensure_utc(w) for w in watched_at if w is not None]
        completed_at = max(stamps) if stamps else None
    next_episode_id = None if is_completed else get_next_unwatched_episode_id(db, user_id, show_id)
    return {
        "watched_episodes": watched,
        "total_episodes": total,
        "is_completed": is_completed,
        "completed_at": completed_at,
        "next_episode_id": next_episode_id,
    }


def get_list_show(db: Session, list_id, show_id) -> Optional[ListShow]:
    return db.execute(
        select(ListShow)
        .where(ListShow.list_id == list_id, ListShow.show_id == show_id)
        .execution_options(populate_existing=True)
    ).scalars().first()


def upsert_list_show(db: Session, list_id, show_id, aggregate: dict) -> None:
    table = ListShow.__table__
    stmt = _insert(db, table).values(
        id=uuid.uuid4(), list_id=list_id, show_id=show_id, added_at=utc_now(), **aggregate
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.list_id, table.c.show_id],
        set_={k: stmt.excluded[k] for k in aggregate},
    )
    db.execute(stmt)


def refresh_list_show(db: Session, list_id, show_id, user_id) -> bool:
    """Recompute an existing list_shows row from scratch; False when the show is not listed."""
    aggregate = compute_list_show_aggregate(db, user_id, show_id)
    result = db.execute(
        update(ListShow.__table__)
        .where(ListShow.list_id == list_id, ListShow.show_id == show_id)
        .values(**aggregate)
    )
    return result.rowcount > 0


def delete_list_show(db: Session, list_id, show_id) -> bool:
    result = db.execute(
        delete(ListShow.__table__).where(ListShow.list_id == list_id, ListShow.show_id == show_id)
    )
    return result.rowcount > 0


def list_show_lock_select(list_id, show_id):
    return (
        select(ListShow.id)
        .where(ListShow.list_id == list_id, ListShow.show_id == show_id)
        .with_for_update()
    )


def lock_list_show(db: Session, list_id, show_id) -> bool:
    """Row-lock the (list, show) aggregate until the transaction ends.

    Taken before the watch set changes: a concurrent writer of the same show waits
    here, and under READ COMMITTED its later statements see the rows the first
    writer committed, so the next-episode subquery is computed on current data.
    SQLite has no row locks and drops FOR UPDATE. Returns False when the show is
    not in the list.
    """
    return db.execute(list_show_lock_select(list_id, show_id)).first() is not None


def apply_watched_delta(db: Session, list_id, show_id, user_id, delta: int) -> bool:
    """Shift watched_episodes by delta in one UPDATE relative to the stored value.

    Completion, completed_at and the next-episode pointer are derived in the same
    statement so concurrent marks on one show cannot lose an increment.
    Returns False when the show is not in the list.
    """
    shifted = ListShow.watched_episodes + delta
    watched = case((shifted < 0, 0), else_=shifted)
    completed = watched >= ListShow.total_episodes
    stmt = (
        update(ListShow.__table__)
        .where(ListShow.list_id == list_id, ListShow.show_id == show_id)
        .values(
            watched_episodes=watched,
            is_completed=case((completed, True), else_=False),
            # Stamp only on the transition into completed
            completed_at=case((completed, func.coalesce(ListShow.completed_at, utc_now())), else_=null()),
            next_episode_id=case((completed, null()), else_=_next_episode_select(user_id, show_id).scalar_subquery()),
        )
    )
    return db.execute(stmt).rowcount > 0


# --- Watch records ----------------------------------------------------------

def insert_user_episodes(db: Session, user_id, episode_ids: Iterable, watched_at: Optional[datetime] = None) -> Set[uuid.UUID]:
    """Insert watch rows, ignoring ones that already exist. Returns the newly inserted episode ids."""
    unique_ids = list(dict.fromkeys(episode_ids))
    if not unique_ids:
        return set()
    stamp = ensure_utc(watched_at) or utc_now()
    table = UserEpisode.__table__
    rows = [{"id": uuid.uuid4(), "user_id": user_id, "episode_id": eid, "watched_at": stamp} for eid in unique_ids]
    stmt = (
        _insert(db, table)
        .values(rows)
        .on_conflict_do_nothing(index_elements=[table.c.user_id, table.c.episode_id])
        .returning(table.c.episode_id)
    )
    return set(db.execute(stmt).scalars().all())


def delete_user_episodes(db: Session, user_id, episode_ids: Iterable) -> Set[uuid.UUID]:
    """Delete watch rows. Returns the episode ids that were actually removed."""
    ids = list(dict.fromkeys(episode_ids))
    if not ids:
        return set()
    table = UserEpisode.__table__
    stmt = (
        delete(table)
        .where(table.c.user_id == user_id, table.c.episode_id.in_(ids))
        .returning(table.c.episode_id)
    )
    return set(db.execute(stmt).scalars().all())


def get_watched_map(db: Session, user_id, episode_ids: Iterable) -> Dict[uuid.UUID, Optional[datetime]]:
    ids = list(episode_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(UserEpisode.episode_id, UserEpisode.watched_at)
        .where(UserEpisode.user_id == user_id, UserEpisode.episode_id.in_(ids))
    ).all()
    return {row.episode_id: row.watched_at for row in rows}


def replace_show_watch_set(db: Session, user_id, show_id, watched: Dict[uuid.UUID, Optional[datetime]]) -> Tuple[int, int]:
    """Make the user's watch rows for one show equal to ``watched`` (episode id -> watched_at).

    Existing rows keep their id and take the upstream timestamp when one is given.
    Returns (added, removed).
    """
    existing = set(db.execute(
        select(UserEpisode.episode_id)
        .join(Episode, Episode.id == UserEpisode.episode_id)
        .where(UserEpisode.user_id == user_id, Episode.show_id == show_id)
    ).scalars().all())

    table = UserEpisode.__table__
    if watched:
        now = utc_now()
        rows = [
            {"id": uuid.uuid4(), "user_id": user_id, "episode_id": eid, "watched_at": ensure_utc(ts) or now}
            for eid, ts in watched.items()
        ]
        stmt = _insert(db, table).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.episode_id],
            set_={"watched_at": stmt.excluded.watched_at},
        )
        db.execute(stmt)

    stale = existing - set(watched)
    if stale:
        db.execute(delete(table).where(table.c.user_id == user_id, table.c.episode_id.in_(list(stale))))
    return len(set(watched) - existing), len(stale)


def get_episode_trakt_ids(db: Session, episode_ids: Iterable) -> List[int]:
    ids = list(episode_ids)
    if not ids:
        return []
    return list(db.execute(
        select(Episode.trakt_id).where(Episode.id.in_(ids)).order_by(Episode.season_number, Episode.episode_number)
    ).scalars())


def get_list_show_ids(db: Session, list_id) -> List[uuid.UUID]:
    return list(db.execute(select(ListShow.show_id).where(ListShow.list_id == list_id)).scalars())


def get_users_with_trakt_token(db: Session) -> List[uuid.UUID]:
    return list(db.execute(select(User.id).where(models.User.trakt_token.is_not(None))).scalars())


def count_progress_episodes(db: Session, show_id, episode_ids: Iterable) -> int:
    """How many of the given episode ids count toward the show's progress."""
    ids = list(episode_ids)
    if not ids:
        return 0
    return db.execute(
        select(func.count(Episode.id)).where(non_special_episodes(show_id), Episode.id.in_(ids))
    ).scalar_one()


def get_episode_index(db: Session, show_id) -> Dict[Tuple[int, int], uuid.UUID]:
    """Map (season_number, episode_number) to episode id for every stored episode of a show."""
    rows = db.execute(
        select(Episode.season_number, Episode.episode_number, Episode.id).where(Episode.show_id == show_id)
    ).all()
    return {(row.season_number, row.episode_number): row.id for row in rows}
