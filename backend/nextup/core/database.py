from sqlalchemy.orm import sessionmaker
from sqlalchemy import create_engine, text
import asyncio
import logging

from nextup.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def _engine_kwargs(url: str) -> dict:
    # SQLite (local dev) has no server-side pool to tune
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # pool_size: base connections
    # max_overflow: additional connections allowed
    # pool_recycle: recycle connections after N seconds to prevent stale connections
    # pool_pre_ping: verify connections before using them
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_schema(bind) -> None:
    """Create every table that does not exist yet."""
    from nextup.models import Base
    Base.metadata.create_all(bind=bind)


async def init_db():
    loop = asyncio.get_running_loop()

    def _run():
        create_schema(engine)
        # Postgres-only supporting indexes; harmless to skip elsewhere
        if engine.dialect.name != "postgresql":
            return
        stmts = [
            "CREATE INDEX IF NOT EXISTS idx_episodes_show_order ON episodes (show_id, season_number, episode_number)",
            "CREATE INDEX IF NOT EXISTS idx_user_episodes_user_episode ON user_episodes (user_id, episode_id)",
        ]
        with engine.begin() as conn:
            for stmt in stmts:
                try:
                    conn.execute(text(stmt))
                except Exception as e:
                    logger.warning(f"Index statement failed ({stmt}): {e}")

    await loop.run_in_executor(None, _run)
    logger.info("Database schema ready")
