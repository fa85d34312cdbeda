"""JSON-ready dict builders for rows handed back to API callers and the read cache."""
from typing import Optional

from nextup.utils.timezone import format_iso_utc


def _split(value: Optional[str]):
    return [v for v in (value or "").split(",") if v]


def _str_or_none(value) -> Optional[str]:
    return str(value) if value is not None else None


def episode_payload(episode, watched_at=None) -> dict:
    return {
        "id": str(episode.id),
        "trakt_id": episode.trakt_id,
        "season_number": episode.season_number,
        "episode_number": episode.episode_number,
        "title": episode.title,
        "overview": episode.overview,
        "runtime": episode.runtime,
        "rating": episode.rating,
        "first_aired": format_iso_utc(episode.first_aired),
        "image_screenshot": episode.image_screenshot,
        "watched": watched_at is not None,
        "watched_at": format_iso_utc(watched_at),
    }


def show_payload(show) -> dict:
    """Summary of a show row; genres/subgenres are split back into lists."""
    return {
        "id": str(show.id),
        "trakt_id": show.trakt_id,
        "slug_id": show.slug_id,
        "tvdb_id": show.tvdb_id,
        "imdb_id": show.imdb_id,
        "tmdb_id": show.tmdb_id,
        "title": show.title,
        "year": show.year,
        "tagline": show.tagline,
        "overview": show.overview,
        "first_aired": format_iso_utc(show.first_aired),
        "airs": {"day": show.airs_day, "time": show.airs_time, "timezone": show.airs_timezone},
        "runtime": show.runtime,
        "country": show.country,
        "status": show.status,
        "rating": show.rating,
        "votes": show.votes,
        "network": show.network,
        "language": show.language,
        "genres": _split(show.genres),
        "subgenres": _split(show.subgenres),
        "aired_episodes": show.aired_episodes,
        "last_watched_at": format_iso_utc(show.last_watched_at),
        "images": {
            "fanart": show.image_fanart,
            "poster": show.image_poster,
            "logo": show.image_logo,
            "clearart": show.image_clearart,
            "banner": show.image_banner,
            "thumb": show.image_thumb,
        },
    }


def progress_payload(list_show) -> dict:
    return {
        "list_id": str(list_show.list_id),
        "show_id": str(list_show.show_id),
        "added_at": format_iso_utc(list_show.added_at),
        "watched_episodes": list_show.watched_episodes,
        "total_episodes": list_show.total_episodes,
        "episodes_left": max((list_show.total_episodes or 0) - (list_show.watched_episodes or 0), 0),
        "is_completed": bool(list_show.is_completed),
        "completed_at": format_iso_utc(list_show.completed_at),
        "next_episode_id": _str_or_none(list_show.next_episode_id),
    }


def show_summary_from_catalog(show) -> dict:
    """Summary of a Trakt show that may not be stored locally (search results)."""
    return {
        "trakt_id": show.ids.trakt,
        "slug_id": show.ids.slug,
        "imdb_id": show.ids.imdb,
        "tmdb_id": show.ids.tmdb,
        "tvdb_id": show.ids.tvdb,
        "title": show.title,
        "year": show.year,
        "overview": show.overview,
        "status": show.status,
        "network": show.network,
        "rating": show.rating,
        "genres": list(show.genres),
        "image_poster": show.images.first("poster"),
    }


def episode_summary_from_catalog(episode) -> dict:
    """Trakt episode that may not be stored locally (upcoming, episode details)."""
    return {
        "trakt_id": episode.ids.trakt,
        "season_number": episode.season,
        "episode_number": episode.number,
        "title": episode.title,
        "overview": episode.overview,
        "runtime": episode.runtime,
        "rating": episode.rating,
        "first_aired": format_iso_utc(episode.first_aired),
        "image_screenshot": episode.images.first("screenshot"),
    }
