"""
watch_state.py

Mark/unmark reconciliation for one (user, show) pair.

Steps, in order:
  1. validate the request before touching the database
  2. one transaction: lock the list_shows row, write/delete user_episodes,
     shift the aggregate by the number of rows that actually changed, commit
  3. drop the user's cached reads
  4. push the change to Trakt

There is no two-phase commit with Trakt. When the push fails the local state
stays applied and an UpstreamError with local_state_committed=True is raised;
the next full-account sync reconciles any drift. Retrying is safe because
inserts ignore existing rows and deletes ignore missing ones.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextup import crud
from nextup.models import Show
from nextup.services.errors import NextUpError, NotFoundError, StoreError, UpstreamError, ValidationError
from nextup.services.read_cache import ReadCache
from nextup.services.trakt_client import TraktClient
from nextup.utils.payload import progress_payload

logger = logging.getLogger(__name__)

MARK = "mark"
UNMARK = "unmark"


@dataclass
class ReconcileResult:
    success: bool
    changed: int
    aggregate: Optional[dict]

    def to_dict(self) -> dict:
        return {"success": self.success, "changed": self.changed, "progress": self.aggregate}


def _default_catalog(token: str) -> TraktClient:
    return TraktClient(token=token)


class WatchStateReconciler:
    def __init__(self, db: Session, catalog_factory: Optional[Callable[[str], object]] = None,
                 cache: Optional[ReadCache] = None):
        self.db = db
        self._catalog_factory = catalog_factory or _default_catalog
        self.cache = cache

    async def mark(self, user_id, token: Optional[str], show_id, episode_ids: Iterable) -> ReconcileResult:
        return await self._reconcile(MARK, user_id, token, show_id, episode_ids)

    async def unmark(self, user_id, token: Optional[str], show_id, episode_ids: Iterable) -> ReconcileResult:
        return await self._reconcile(UNMARK, user_id, token, show_id, episode_ids)

    @staticmethod
    def _validate(token, show_id, episode_ids) -> tuple:
        if not token:
            raise ValidationError("A Trakt token is required to change watch state")
        if show_id is None or show_id == "":
            raise ValidationError("show_id is required")
        show_uuid = crud.parse_uuid(show_id, "show_id")
        if isinstance(episode_ids, (str, bytes)) or episode_ids is None:
            raise ValidationError("episode_ids must be a list of episode ids")
        ids: List[uuid.UUID] = list(dict.fromkeys(crud.parse_uuid(e, "episode_id") for e in episode_ids))
        if not ids:
            raise ValidationError("episode_ids must not be empty")
        return show_uuid, ids

    async def _reconcile(self, action: str, user_id, token, show_id, episode_ids) -> ReconcileResult:
        show_uuid, ids = self._validate(token, show_id, episode_ids)

        try:
            if self.db.get(Show, show_uuid) is None:
                raise NotFoundError(f"Show {show_uuid} not found")
            list_id = crud.get_default_list_id(self.db, user_id)
            if list_id is None:
                raise NotFoundError(f"User {user_id} has no default list")
            episodes = crud.get_show_episodes(self.db, show_uuid, ids)
            if len(episodes) != len(ids):
                known = {e.id for e in episodes}
                missing = ", ".join(str(i) for i in ids if i not in known)
                raise ValidationError(f"Episodes do not belong to show {show_uuid}: {missing}")

            crud.lock_list_show(self.db, list_id, show_uuid)
            if action == MARK:
                changed_ids = crud.insert_user_episodes(self.db, user_id, ids)
                delta = crud.count_progress_episodes(self.db, show_uuid, changed_ids)
            else:
                changed_ids = crud.delete_user_episodes(self.db, user_id, ids)
                delta = -crud.count_progress_episodes(self.db, show_uuid, changed_ids)

            if delta:
                in_list = crud.apply_watched_delta(self.db, list_id, show_uuid, user_id, delta)
                if not in_list:
                    logger.debug(f"[WatchState] Show {show_uuid} not in list {list_id}; history only")
            list_show = crud.get_list_show(self.db, list_id, show_uuid)
            aggregate = progress_payload(list_show) if list_show is not None else None
            trakt_ids = [e.trakt_id for e in sorted(episodes, key=lambda e: (e.season_number, e.episode_number))]
            self.db.commit()
        except NextUpError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[WatchState] {action} failed for user {user_id}, show {show_uuid}: {e}")
            raise StoreError(f"Failed to {action} episodes: {e}") from e

        logger.info(f"[WatchState] {action} user={user_id} show={show_uuid} requested={len(ids)} changed={len(changed_ids)}")

        if self.cache is not None:
            await self.cache.invalidate_user(user_id)

        catalog = self._catalog_factory(token)
        try:
            if action == MARK:
                await catalog.push_mark(trakt_ids)
            else:
                await catalog.push_unmark(trakt_ids)
        except UpstreamError as e:
            logger.warning(f"[WatchState] Trakt push for {action} failed, local state kept: {e.message}")
            raise UpstreamError(
                f"Saved locally but Trakt could not be updated: {e.message}",
                status=e.status,
                local_state_committed=True,
            ) from e

        return ReconcileResult(success=True, changed=len(changed_ids), aggregate=aggregate)
