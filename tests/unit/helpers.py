"""Shared builders and in-memory fakes for the unit tests."""
from typing import Dict, List, Optional, Sequence

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nextup import crud
from nextup.models import Base, Episode, ListShow, UserEpisode
from nextup.schemas import CatalogEpisode, CatalogSeason, CatalogShow, Pagination, SearchPage, SearchResult, WatchedShow
from nextup.services.show_ingestion import ShowIngestion
from nextup.services.trakt_client import CatalogError


def make_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it explicitly
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


# --- Trakt payload builders -----------------------------------------------

def show_dict(trakt_id: int = 1, title: str = "Show", **extra) -> dict:
    data = {
        "title": title,
        "year": 2020,
        "ids": {
            "trakt": trakt_id,
            "slug": f"show-{trakt_id}",
            "tvdb": 5000 + trakt_id,
            "imdb": f"tt{1000000 + trakt_id}",
            "tmdb": 9000 + trakt_id,
        },
        "runtime": 45,
        "genres": ["drama"],
        "images": {"poster": [f"poster-{trakt_id}.jpg"]},
    }
    data.update(extra)
    return data


def episode_trakt_id(show_trakt_id: int, season: int, number: int) -> int:
    return show_trakt_id * 10000 + season * 100 + number


def season_dict(show_trakt_id: int, number: int, episodes: int, title: Optional[str] = None,
                runtime: Optional[int] = 30) -> dict:
    return {
        "number": number,
        "ids": {"trakt": show_trakt_id * 100 + number},
        "title": title if title is not None else f"Season {number}",
        "episode_count": episodes,
        "episodes": [
            {
                "season": number,
                "number": n,
                "title": f"Episode {n}",
                "ids": {"trakt": episode_trakt_id(show_trakt_id, number, n)},
                "runtime": runtime,
            }
            for n in range(1, episodes + 1)
        ],
    }


def build_show(trakt_id: int = 1, seasons: Optional[Dict[int, int]] = None, specials: int = 0,
               titled_specials: int = 0, title: Optional[str] = None, **extra):
    """(CatalogShow, [CatalogSeason]) with the given {season_number: episode_count} layout.

    ``specials`` adds a season 0; ``titled_specials`` adds a season numbered 99 titled "Specials".
    """
    layout = {1: 2} if seasons is None else seasons
    raw = [season_dict(trakt_id, n, count) for n, count in sorted(layout.items())]
    if specials:
        raw.insert(0, season_dict(trakt_id, 0, specials, title="Specials"))
    if titled_specials:
        raw.append(season_dict(trakt_id, 99, titled_specials, title="Specials"))
    show = CatalogShow.model_validate(show_dict(trakt_id, title=title or f"Show {trakt_id}", **extra))
    return show, [CatalogSeason.model_validate(s) for s in raw]


def watched_dict(show: CatalogShow, watched: Dict[int, Sequence[int]],
                 last_watched_at: str = "2024-01-15T20:30:00.000Z") -> dict:
    return {
        "plays": sum(len(v) for v in watched.values()),
        "last_watched_at": last_watched_at,
        "show": show.model_dump(mode="json"),
        "seasons": [
            {"number": s, "episodes": [{"number": n, "plays": 1, "last_watched_at": last_watched_at} for n in eps]}
            for s, eps in watched.items()
        ],
    }


# --- Store seeding ----------------------------------------------------------

def seed_user(db, email: str = "viewer@example.com", token: Optional[str] = "stored-token"):
    user = crud.create_user(db, email, trakt_token=token)
    db.commit()
    return user.id, crud.get_default_list_id(db, user.id)


def seed_show(db, trakt_id: int = 1, seasons: Optional[Dict[int, int]] = None, specials: int = 0,
              titled_specials: int = 0, **extra):
    show, season_list = build_show(trakt_id, seasons, specials, titled_specials, **extra)
    show_id = ShowIngestion(db).ingest(show, season_list).show_id
    db.commit()
    return show_id


def episode_ids(db, show_id) -> Dict[tuple, object]:
    return crud.get_episode_index(db, show_id)


def list_show_row(db, list_id, show_id) -> Optional[ListShow]:
    return crud.get_list_show(db, list_id, show_id)


def count_user_episodes(db, user_id, show_id=None) -> int:
    stmt = select(func.count(UserEpisode.id)).where(UserEpisode.user_id == user_id)
    if show_id is not None:
        stmt = stmt.join(Episode, Episode.id == UserEpisode.episode_id).where(Episode.show_id == show_id)
    return db.execute(stmt).scalar_one()


# --- Fakes --------------------------------------------------------------------

class FakeCatalog:
    """In-memory stand-in for TraktClient."""

    def __init__(self):
        self.shows: Dict[str, CatalogShow] = {}
        self.seasons: Dict[str, List[CatalogSeason]] = {}
        self.watched: List[dict] = []
        self.next_episodes: Dict[str, CatalogEpisode] = {}
        self.search_results: List[CatalogShow] = []
        self.fail_seasons_for = set()
        self.fail_push = False
        self.pushed: List[tuple] = []
        self.season_calls: List[str] = []

    def factory(self, token=None):
        return self

    def add_show(self, show: CatalogShow, seasons: List[CatalogSeason]):
        for key in (show.ids.trakt, show.ids.slug, show.ids.imdb):
            if key is not None:
                self.shows[str(key)] = show
                self.seasons[str(key)] = seasons

    async def fetch_show(self, external_id):
        show = self.shows.get(str(external_id))
        if show is None:
            raise CatalogError(404, f"Trakt API error 404: {external_id}")
        return show

    async def fetch_seasons(self, external_id, include_specials=False):
        key = str(external_id)
        self.season_calls.append(key)
        if key in self.fail_seasons_for:
            raise CatalogError(500, "Trakt API error 500: boom")
        return list(self.seasons.get(key, []))

    async def fetch_watched_shows(self, page_size=100, max_pages=1000):
        return [WatchedShow.model_validate(w) for w in self.watched]

    async def fetch_episode(self, external_id, season, number):
        for s in self.seasons.get(str(external_id), []):
            for episode in s.episodes if s.number == season else []:
                if episode.number == number:
                    return episode
        return None

    async def fetch_next_episode(self, external_id):
        return self.next_episodes.get(str(external_id))

    async def push_mark(self, episode_trakt_ids):
        if self.fail_push:
            raise CatalogError(503, "Trakt API error 503: unavailable")
        self.pushed.append(("mark", list(episode_trakt_ids)))

    async def push_unmark(self, episode_trakt_ids):
        if self.fail_push:
            raise CatalogError(503, "Trakt API error 503: unavailable")
        self.pushed.append(("unmark", list(episode_trakt_ids)))

    async def search(self, query, page=1, page_size=10):
        results = [SearchResult(show=s, score=1.0) for s in self.search_results]
        return SearchPage(results=results, pagination=Pagination(page=page, limit=page_size, item_count=len(results)))


class FakeRedis:
    """Subset of redis.asyncio.Redis used by the read cache and the sync lock."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, set] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def incr(self, key):
        self.values[key] = str(int(self.values.get(key, 0)) + 1)
        return int(self.values[key])

    async def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
        return removed
