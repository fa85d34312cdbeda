from fastapi import APIRouter, Depends
import logging

from nextup.api.deps import get_catalog_factory, get_current_user_id, get_read_cache, get_trakt_token
from nextup.core.database import get_db
from nextup.schemas import WatchedEpisodesRequest
from nextup.services.errors import ValidationError
from nextup.services.watch_state import MARK, UNMARK, WatchStateReconciler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/episodes/watched")
async def update_watched_episodes(
    payload: WatchedEpisodesRequest,
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
    catalog_factory=Depends(get_catalog_factory),
):
    """Mark or unmark episodes of one show: {show_id, episode_ids, action: mark|unmark}."""
    if payload.action not in (MARK, UNMARK):
        raise ValidationError("action must be 'mark' or 'unmark'")
    reconciler = WatchStateReconciler(db, catalog_factory=catalog_factory, cache=cache)
    if payload.action == MARK:
        result = await reconciler.mark(user_id, token, payload.show_id, payload.episode_ids)
    else:
        result = await reconciler.unmark(user_id, token, payload.show_id, payload.episode_ids)
    return result.to_dict()
