"""
stats.py

Viewing statistics derived from user_episodes. Specials never count.
"""
import logging
from collections import Counter, defaultdict
from typing import Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from nextup import crud
from nextup.models import Episode, Show, UserEpisode

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR
MINUTES_PER_MONTH = 30 * MINUTES_PER_DAY
MINUTES_PER_YEAR = 365 * MINUTES_PER_DAY

TOP_N = 3


def breakdown_minutes(total_minutes: int) -> Dict[str, int]:
    """Split minutes into years/months/days/hours/minutes (30-day months, 365-day years)."""
    remaining = max(int(total_minutes or 0), 0)
    years, remaining = divmod(remaining, MINUTES_PER_YEAR)
    months, remaining = divmod(remaining, MINUTES_PER_MONTH)
    days, remaining = divmod(remaining, MINUTES_PER_DAY)
    hours, minutes = divmod(remaining, MINUTES_PER_HOUR)
    return {"years": years, "months": months, "days": days, "hours": hours, "minutes": minutes}


def compute_user_stats(db: Session, user_id) -> dict:
    rows = db.execute(
        select(
            Episode.show_id,
            Episode.season_id,
            Episode.runtime,
            Show.runtime.label("show_runtime"),
            Show.title,
            Show.genres,
        )
        .join(UserEpisode, UserEpisode.episode_id == Episode.id)
        .join(Show, Show.id == Episode.show_id)
        .where(UserEpisode.user_id == user_id, crud.progress_episode_filter())
    ).all()

    total_minutes = 0
    seasons = set()
    genre_counts: Counter = Counter()
    show_minutes: Dict = defaultdict(int)
    show_titles: Dict = {}
    for row in rows:
        runtime = row.runtime or row.show_runtime or 0
        total_minutes += runtime
        seasons.add(row.season_id)
        show_minutes[row.show_id] += runtime
        show_titles[row.show_id] = row.title
        for genre in (row.genres or "").split(","):
            if genre:
                genre_counts[genre] += 1

    top_genres = sorted(genre_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_N]
    top_shows = sorted(show_minutes.items(), key=lambda kv: (-kv[1], show_titles[kv[0]] or ""))[:TOP_N]

    stats = {
        "episodes_watched": len(rows),
        "seasons_watched": len(seasons),
        "shows_watched": len(show_minutes),
        "total_minutes": total_minutes,
        "time_watched": breakdown_minutes(total_minutes),
        "top_genres": [{"genre": g, "episodes": n} for g, n in top_genres],
        "top_shows": [
            {"show_id": str(show_id), "title": show_titles[show_id], "minutes": minutes}
            for show_id, minutes in top_shows
        ],
    }
    logger.debug(f"[Stats] User {user_id}: {stats['episodes_watched']} episodes, {total_minutes} minutes")
    return stats
