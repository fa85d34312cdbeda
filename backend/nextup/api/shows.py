from fastapi import APIRouter, Depends
import logging

from nextup.api.deps import get_catalog_factory, get_current_user_id, get_read_cache, get_trakt_token
from nextup.core.database import get_db
from nextup.services.upcoming import get_upcoming_episodes
from nextup.services.watchlist import get_episode_detail, get_show_detail

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/shows/{identifier}")
async def show_detail(
    identifier: str,
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
    catalog_factory=Depends(get_catalog_factory),
):
    """Show by internal id, Trakt id/slug, IMDb/TMDB/TVDB id, with the user's progress."""
    return await get_show_detail(db, user_id, identifier, token=token, cache=cache, catalog_factory=catalog_factory)


@router.get("/shows/{identifier}/seasons/{season}/episodes/{episode}")
async def episode_detail(
    identifier: str,
    season: int,
    episode: int,
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    catalog_factory=Depends(get_catalog_factory),
):
    return await get_episode_detail(db, user_id, identifier, season, episode, token=token,
                                    catalog_factory=catalog_factory)


@router.get("/upcoming")
async def upcoming(
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    catalog_factory=Depends(get_catalog_factory),
):
    return {"episodes": await get_upcoming_episodes(db, user_id, token, catalog_factory=catalog_factory)}
