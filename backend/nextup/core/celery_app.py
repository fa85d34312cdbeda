from celery import Celery
from celery.schedules import crontab
from nextup.core.config import settings
import os

celery_app = Celery(
    "nextup",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["nextup.services.tasks"]
)

celery_app.conf.update(
    result_expires=3600,
    task_acks_late=True,
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks to prevent memory leaks
    worker_prefetch_multiplier=1,    # Account syncs are long; take one at a time

    broker_connection_retry_on_startup=True,
    broker_pool_limit=10,

    # RedBeat scheduler configuration
    beat_scheduler='redbeat.schedulers:RedBeatScheduler',
    redbeat_redis_url=settings.redis_url,
    redbeat_key_prefix='nextup:beat:',

    task_routes={
        'nextup.services.tasks.sync_account_task': {'queue': 'sync'},
        'nextup.services.tasks.sync_all_accounts': {'queue': 'sync'},
    },

    beat_schedule={},
    timezone=os.getenv("NEXTUP_TIMEZONE") or os.getenv("TZ") or "UTC",
)

if settings.scheduled_sync_enabled:
    # Daily full-account sync for every user with a stored Trakt token
    celery_app.conf.beat_schedule["sync-all-accounts-daily"] = {
        "task": "nextup.services.tasks.sync_all_accounts",
        "schedule": crontab(hour=settings.scheduled_sync_hour, minute=0),
    }
