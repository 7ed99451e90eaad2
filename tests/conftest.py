"""
Shared fixtures: a file-backed SQLite database per test and a controllable
clock for the cache.
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from tripcraft.core.cache import CacheLayer
from tripcraft.core.database import build_engine, build_session_factory, init_db
from tripcraft.core.llm_service import set_llm_service
from tripcraft.tools.place_provider import set_place_provider


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 5, 1, 12, 0, 0))


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tripcraft_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def cache(session_factory, clock):
    return CacheLayer(session_factory, clock=clock)


@pytest.fixture(autouse=True)
def reset_global_services():
    yield
    set_llm_service(None)
    set_place_provider(None)
