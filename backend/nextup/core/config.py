import os
from pydantic_settings import BaseSettings



class Settings(BaseSettings):
    db_user: str = os.getenv("POSTGRES_USER", "nextup")
    db_password: str = os.getenv("POSTGRES_PASSWORD", "nextup")
    db_name: str = os.getenv("POSTGRES_DB", "nextup")
    database_url: str = f"postgresql+psycopg2://{os.getenv('POSTGRES_USER', 'nextup')}:{os.getenv('POSTGRES_PASSWORD', 'nextup')}@db:5432/{os.getenv('POSTGRES_DB', 'nextup')}"
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Trakt application credentials (user tokens arrive per request or live on the users row)
    trakt_api_url: str = os.getenv("TRAKT_API_URL", "https://api.trakt.tv")
    trakt_client_id: str = os.getenv("TRAKT_CLIENT_ID", "")
    trakt_timeout_seconds: float = float(os.getenv("TRAKT_TIMEOUT_SECONDS", "10"))
    trakt_user_agent: str = os.getenv("TRAKT_USER_AGENT", "NextUp/1.0.0")

    # Full-account sync throttling
    sync_inter_show_delay_ms: int = int(os.getenv("SYNC_INTER_SHOW_DELAY_MS", "300"))
    sync_page_size: int = int(os.getenv("SYNC_PAGE_SIZE", "100"))

    # Fan-out windows for collection-wide reads
    season_fetch_batch_size: int = int(os.getenv("SEASON_FETCH_BATCH_SIZE", "4"))
    next_episode_batch_size: int = int(os.getenv("NEXT_EPISODE_BATCH_SIZE", "5"))

    # Read-through cache for show detail / watchlist payloads
    cache_enabled: bool = os.getenv("CACHE_ENABLED", "true").lower() == "true"

    # Daily full-account sync for every user with a stored Trakt token
    scheduled_sync_enabled: bool = os.getenv("SCHEDULED_SYNC_ENABLED", "true").lower() == "true"
    scheduled_sync_hour: int = int(os.getenv("SCHEDULED_SYNC_HOUR", "5"))

settings = Settings()
