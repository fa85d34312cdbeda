from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
import logging

from nextup.api.deps import get_current_user_id
from nextup.core.database import get_db
from nextup.services.errors import StoreError
from nextup.services.stats import compute_user_stats

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/stats")
def user_stats(user_id=Depends(get_current_user_id), db=Depends(get_db)):
    try:
        return compute_user_stats(db, user_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to compute stats for user {user_id}: {e}")
        raise StoreError(f"Failed to compute stats: {e}") from e
