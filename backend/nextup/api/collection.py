from fastapi import APIRouter, Depends
import logging

from nextup.api.deps import get_catalog_factory, get_current_user_id, get_read_cache, get_trakt_token
from nextup.core.database import get_db
from nextup.schemas import CollectionRequest
from nextup.services.collection import CollectionManager
from nextup.services.errors import ValidationError
from nextup.services.upcoming import refresh_collection

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/collection")
async def update_collection(
    payload: CollectionRequest,
    user_id=Depends(get_current_user_id),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
):
    """Add a show to, or remove it from, the user's default list."""
    if not payload.show_id:
        raise ValidationError("show_id is required")
    manager = CollectionManager(db, cache=cache)
    if payload.action == "add":
        return await manager.add_show(user_id, payload.show_id)
    if payload.action == "remove":
        return await manager.remove_show(user_id, payload.show_id)
    raise ValidationError("action must be 'add' or 'remove'")


@router.post("/collection/refresh")
async def refresh(
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
    catalog_factory=Depends(get_catalog_factory),
):
    result = await refresh_collection(db, user_id, token, catalog_factory=catalog_factory, cache=cache)
    return {"success": result.ok, **result.to_dict()}
