from fastapi import APIRouter, Depends, Query
import logging

from nextup import crud
from nextup.api.deps import get_current_user_id, get_read_cache
from nextup.core.database import get_db
from nextup.services.errors import NotFoundError
from nextup.services.watchlist import get_watchlist

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/lists/default")
def default_list(user_id=Depends(get_current_user_id), db=Depends(get_db)):
    list_id = crud.get_default_list_id(db, user_id)
    if list_id is None:
        raise NotFoundError(f"User {user_id} has no default list")
    return {"list_id": str(list_id)}


@router.get("/lists/{list_id}/shows")
async def list_shows(
    list_id: str,
    sort_by: str = Query("added_at"),
    order: str = Query("desc"),
    include_completed: bool = Query(False),
    user_id=Depends(get_current_user_id),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
):
    shows = await get_watchlist(db, user_id, list_id, sort_by=sort_by, order=order,
                                include_completed=include_completed, cache=cache)
    return {"list_id": list_id, "shows": shows}
