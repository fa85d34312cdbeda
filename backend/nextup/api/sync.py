from fastapi import APIRouter, Depends
import logging

from nextup.api.deps import get_catalog_factory, get_current_user_id, get_read_cache, get_trakt_token
from nextup.core.database import get_db
from nextup.services.account_sync import AccountSync

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/sync")
async def sync_account(
    user_id=Depends(get_current_user_id),
    token=Depends(get_trakt_token),
    db=Depends(get_db),
    cache=Depends(get_read_cache),
    catalog_factory=Depends(get_catalog_factory),
):
    """Re-import the whole Trakt watch history; per-show failures are listed in the response."""
    report = await AccountSync(db, catalog_factory=catalog_factory, cache=cache).sync(user_id, token)
    return report.to_dict()
