"""Pytest bootstrap configuration.

Environment variables are seeded before any module reads application settings.
The Payment Store runs on a throwaway SQLite file per test (aiosqlite).
"""
import os

os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio

from core.config import (
    Settings,
    StoreRetrySettings,
    WatcherSettings,
    WebhookSettings,
)
from infrastructure.database import build_engine, build_session_factory, create_tables, drop_tables
from infrastructure.unit_of_work import uow_factory
from tests.fakes import FakeChainClient, RecordingSender


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await drop_tables(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def make_uow(session_factory):
    return uow_factory(session_factory)


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def test_settings():
    return Settings(
        webhook=WebhookSettings(retry_delays=[0, 0, 0], workers=2),
        watcher=WatcherSettings(initial_backoff=0, max_backoff=0, concurrency=2),
        store_retry=StoreRetrySettings(initial_delay=0),
    )


@pytest_asyncio.fixture
async def app(test_settings, session_factory, chain, sender):
    from main import build_application

    application = build_application(
        test_settings,
        session_factory=session_factory,
        chain=chain,
        sender=sender,
    )
    await application.dispatcher.start()
    yield application
    await application.dispatcher.stop()
