import os

# Must be set before nextup.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TRAKT_CLIENT_ID", "test-client-id")
os.environ.setdefault("SYNC_INTER_SHOW_DELAY_MS", "0")
os.environ.setdefault("SCHEDULED_SYNC_ENABLED", "false")

import pytest

from helpers import FakeCatalog, FakeRedis, make_engine, make_session_factory
from nextup.services.read_cache import ReadCache


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return ReadCache(client=fake_redis, enabled=True)


@pytest.fixture
def catalog():
    return FakeCatalog()
