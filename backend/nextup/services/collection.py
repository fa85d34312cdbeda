"""
collection.py

Membership of shows in a user's default list. Adding computes the progress
aggregate from scratch out of user_episodes; removing drops only the
list_shows row and keeps the watch history.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextup import crud
from nextup.models import Show
from nextup.services.errors import NextUpError, NotFoundError, StoreError
from nextup.services.read_cache import ReadCache
from nextup.utils.payload import progress_payload

logger = logging.getLogger(__name__)


class CollectionManager:
    def __init__(self, db: Session, cache: Optional[ReadCache] = None):
        self.db = db
        self.cache = cache

    def _default_list(self, user_id):
        list_id = crud.get_default_list_id(self.db, user_id)
        if list_id is None:
            raise NotFoundError(f"User {user_id} has no default list")
        return list_id

    async def _invalidate(self, user_id) -> None:
        if self.cache is not None:
            await self.cache.invalidate_user(user_id)

    async def add_show(self, user_id, show_id) -> dict:
        """Add a show to the default list; calling it again just recomputes the row."""
        show_uuid = crud.parse_uuid(show_id, "show_id")
        try:
            if self.db.get(Show, show_uuid) is None:
                raise NotFoundError(f"Show {show_uuid} not found")
            list_id = self._default_list(user_id)
            aggregate = crud.compute_list_show_aggregate(self.db, user_id, show_uuid)
            crud.upsert_list_show(self.db, list_id, show_uuid, aggregate)
            progress = progress_payload(crud.get_list_show(self.db, list_id, show_uuid))
            self.db.commit()
        except NextUpError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[Collection] add failed for user {user_id}, show {show_uuid}: {e}")
            raise StoreError(f"Failed to add show to collection: {e}") from e
        logger.info(f"[Collection] Added show {show_uuid} to list {list_id} "
                    f"({aggregate['watched_episodes']}/{aggregate['total_episodes']} watched)")
        await self._invalidate(user_id)
        return {"success": True, "progress": progress}

    async def remove_show(self, user_id, show_id) -> dict:
        show_uuid = crud.parse_uuid(show_id, "show_id")
        try:
            list_id = self._default_list(user_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to resolve default list: {e}") from e
        result = self.remove_show_from_list(list_id, show_uuid)
        await self._invalidate(user_id)
        return result

    def remove_show_from_list(self, list_id, show_id) -> dict:
        """Delete the membership row only; user_episodes are untouched."""
        show_uuid = crud.parse_uuid(show_id, "show_id")
        try:
            removed = crud.delete_list_show(self.db, list_id, show_uuid)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[Collection] remove failed for list {list_id}, show {show_uuid}: {e}")
            raise StoreError(f"Failed to remove show from collection: {e}") from e
        logger.info(f"[Collection] Removed show {show_uuid} from list {list_id} (existed={removed})")
        return {"success": True, "removed": removed}

    def refresh_show(self, user_id, show_id) -> bool:
        """Recompute an existing list_shows row from scratch. Does not commit."""
        list_id = self._default_list(user_id)
        return crud.refresh_list_show(self.db, list_id, show_id, user_id)
