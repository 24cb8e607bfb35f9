"""Shared fixtures: a file-backed SQLite database and fakes for the I/O boundaries."""

import pytest
import pytest_asyncio

import app.models  # noqa: F401  (register mappers)
from app.core.database import Base, build_engine, create_session_factory

from tests.helpers import FakeClock, RecordingEventSink, RecordingMailTransport


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'alerts.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mail():
    return RecordingMailTransport()


@pytest.fixture
def events():
    return RecordingEventSink()
