"""
schemas.py

Pydantic schemas for Trakt payloads (resolved to explicit defaults at the
ingestion boundary) and for API request bodies.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
import datetime
import re

# Seasons numbered 0 or titled like "Specials" never count toward progress
SPECIAL_TITLE_PATTERN = re.compile(r"special", re.IGNORECASE)


def is_special_season(number: Optional[int], title: Optional[str] = None) -> bool:
    if number == 0:
        return True
    return bool(title and SPECIAL_TITLE_PATTERN.search(title))


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class CatalogIds(BaseModel):
    trakt: Optional[int] = None
    slug: Optional[str] = None
    tvdb: Optional[int] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None


class CatalogImages(BaseModel):
    """Trakt image lists; every kind defaults to an empty list."""
    fanart: List[str] = Field(default_factory=list)
    poster: List[str] = Field(default_factory=list)
    logo: List[str] = Field(default_factory=list)
    clearart: List[str] = Field(default_factory=list)
    banner: List[str] = Field(default_factory=list)
    thumb: List[str] = Field(default_factory=list)
    screenshot: List[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_lists(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    def first(self, kind: str) -> Optional[str]:
        values = getattr(self, kind, None) or []
        return values[0] if values else None


class CatalogAirs(BaseModel):
    day: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None


class CatalogEpisode(BaseModel):
    season: Optional[int] = None
    number: int
    title: Optional[str] = None
    ids: CatalogIds = Field(default_factory=CatalogIds)
    votes: Optional[int] = None
    rating: Optional[float] = None
    runtime: int = 0
    overview: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None
    first_aired: Optional[datetime.datetime] = None
    episode_type: Optional[str] = None
    images: CatalogImages = Field(default_factory=CatalogImages)

    @field_validator("runtime", mode="before")
    @classmethod
    def _runtime_default(cls, value):
        return 0 if value is None else value

    @field_validator("ids", "images", mode="before")
    @classmethod
    def _nested_default(cls, value):
        return {} if value is None else value


class CatalogSeason(BaseModel):
    number: int
    ids: CatalogIds = Field(default_factory=CatalogIds)
    title: Optional[str] = None
    episode_count: Optional[int] = None
    aired_episodes: Optional[int] = None
    votes: Optional[int] = None
    rating: Optional[float] = None
    overview: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None
    first_aired: Optional[datetime.datetime] = None
    images: CatalogImages = Field(default_factory=CatalogImages)
    episodes: List[CatalogEpisode] = Field(default_factory=list)

    @field_validator("episodes", mode="before")
    @classmethod
    def _episodes_default(cls, value):
        return _none_to_list(value)

    @field_validator("ids", "images", mode="before")
    @classmethod
    def _nested_default(cls, value):
        return {} if value is None else value

    @property
    def is_special(self) -> bool:
        return is_special_season(self.number, self.title)


class CatalogShow(BaseModel):
    title: Optional[str] = None
    year: Optional[int] = None
    ids: CatalogIds = Field(default_factory=CatalogIds)
    tagline: Optional[str] = None
    overview: Optional[str] = None
    first_aired: Optional[datetime.datetime] = None
    airs: CatalogAirs = Field(default_factory=CatalogAirs)
    runtime: int = 0
    country: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[float] = None
    votes: Optional[int] = None
    trailer: Optional[str] = None
    homepage: Optional[str] = None
    network: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None
    language: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    subgenres: List[str] = Field(default_factory=list)
    aired_episodes: Optional[int] = None
    images: CatalogImages = Field(default_factory=CatalogImages)

    @field_validator("runtime", mode="before")
    @classmethod
    def _runtime_default(cls, value):
        return 0 if value is None else value

    @field_validator("genres", "subgenres", mode="before")
    @classmethod
    def _lists_default(cls, value):
        return _none_to_list(value)

    @field_validator("ids", "images", "airs", mode="before")
    @classmethod
    def _nested_default(cls, value):
        return {} if value is None else value


class WatchedEpisode(BaseModel):
    number: int
    plays: int = 0
    last_watched_at: Optional[datetime.datetime] = None


class WatchedSeason(BaseModel):
    number: int
    title: Optional[str] = None
    episodes: List[WatchedEpisode] = Field(default_factory=list)

    @field_validator("episodes", mode="before")
    @classmethod
    def _episodes_default(cls, value):
        return _none_to_list(value)


class WatchedShow(BaseModel):
    """One entry of /users/me/watched/shows."""
    plays: int = 0
    last_watched_at: Optional[datetime.datetime] = None
    last_updated_at: Optional[datetime.datetime] = None
    show: CatalogShow
    seasons: List[WatchedSeason] = Field(default_factory=list)

    @field_validator("seasons", mode="before")
    @classmethod
    def _seasons_default(cls, value):
        return _none_to_list(value)


class Pagination(BaseModel):
    page: int = 1
    limit: int = 10
    page_count: int = 1
    item_count: int = 0


class SearchResult(BaseModel):
    type: str = "show"
    score: Optional[float] = None
    show: CatalogShow


class SearchPage(BaseModel):
    results: List[SearchResult] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# Payloads
class WatchedEpisodesRequest(BaseModel):
    show_id: Optional[str] = None
    episode_ids: List[str] = Field(default_factory=list)
    action: Optional[str] = None


class CollectionRequest(BaseModel):
    show_id: Optional[str] = None
    action: Optional[str] = None
