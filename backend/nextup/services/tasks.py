"""
tasks.py

Celery tasks for background full-account syncs. A Redis lock per user keeps
a scheduled sync and a manually queued one from running over each other.
"""
import asyncio
import logging
import uuid
from typing import Optional

from celery import shared_task

from nextup import crud
from nextup.core.database import SessionLocal
from nextup.core.redis_client import get_redis
from nextup.services.account_sync import AccountSync
from nextup.services.errors import NextUpError
from nextup.services.read_cache import ReadCache

logger = logging.getLogger(__name__)

SYNC_LOCK_TIMEOUT = 60 * 60


class SyncLockBusy(Exception):
    """Raised when sync lock cannot be acquired."""
    pass


class SyncLock:
    """Redis-based lock for account sync operations."""

    def __init__(self, user_id, lock_type: str = "sync", redis=None):
        self.user_id = user_id
        self.redis = redis if redis is not None else get_redis()
        self.lock_key = f"nextup:lock:{lock_type}:user:{user_id}"

    async def acquire(self, timeout: int = SYNC_LOCK_TIMEOUT) -> bool:
        acquired = await self.redis.set(self.lock_key, "locked", ex=timeout, nx=True)
        if not acquired:
            logger.info(f"Lock already held: {self.lock_key}")
        return bool(acquired)

    async def release(self):
        await self.redis.delete(self.lock_key)

    async def __aenter__(self):
        if not await self.acquire():
            raise SyncLockBusy(f"Could not acquire lock: {self.lock_key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


async def run_account_sync(user_id, token: Optional[str] = None, redis=None) -> dict:
    """Sync one account under its lock, falling back to the stored Trakt token."""
    db = SessionLocal()
    try:
        if token is None:
            user = crud.get_user(db, user_id)
            token = user.trakt_token if user is not None else None
            db.rollback()
        async with SyncLock(user_id, redis=redis):
            report = await AccountSync(db, cache=ReadCache(client=redis)).sync(user_id, token)
        return report.to_dict()
    finally:
        db.close()


def _run(coro):
    # Fresh event loop per task inside the Celery worker
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@shared_task(bind=True, max_retries=2, default_retry_delay=300)
def sync_account_task(self, user_id: str):
    """Full-account sync for one user with the token stored on the users row."""
    try:
        result = _run(run_account_sync(uuid.UUID(str(user_id))))
        logger.info(f"sync_account_task completed for user {user_id}: {result['message']}")
        return result
    except SyncLockBusy as e:
        logger.info(f"sync_account_task skipped for user {user_id}: {e}")
        return {"message": "Sync already running", "synced": 0, "failed": []}
    except NextUpError as e:
        if e.status_code >= 500:
            logger.error(f"sync_account_task failed for user {user_id}: {e.message}", exc_info=True)
            raise self.retry(exc=e)
        # Missing token or default list; a retry cannot change that
        logger.warning(f"sync_account_task not retried for user {user_id}: {e.message}")
        return {"message": e.message, "synced": 0, "failed": []}
    except Exception as e:
        logger.error(f"sync_account_task failed for user {user_id}: {e}", exc_info=True)
        raise self.retry(exc=e)


@shared_task
def sync_all_accounts():
    """Queue one account sync per user that has a stored Trakt token."""
    db = SessionLocal()
    try:
        user_ids = crud.get_users_with_trakt_token(db)
    finally:
        db.close()
    for user_id in user_ids:
        sync_account_task.delay(str(user_id))
    logger.info(f"sync_all_accounts queued {len(user_ids)} account syncs")
    return len(user_ids)
