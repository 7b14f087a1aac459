"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Set test environment before importing the app
os.environ["LOGBOOK_DEBUG"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from logbook.backup.destination import DestinationResolver
from logbook.db.database import create_engine, open_store
from logbook.db.store import EntityStore

FIXED_NOW = datetime(2025, 6, 1, 8, 30, tzinfo=UTC)


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Clock used by the store for timestamps."""
    return FakeClock()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """URL of a fresh database file for each test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'logbook.db'}"


@pytest_asyncio.fixture
async def store(db_url: str, clock: FakeClock) -> AsyncGenerator[EntityStore, None]:
    """Create a migrated store for each test."""
    entity_store = await open_store(create_engine(db_url), clock=clock)
    try:
        yield entity_store
    finally:
        await entity_store.close()


@pytest.fixture
def download_dir(tmp_path: Path) -> Path:
    """Downloads folder; created on first forced save."""
    return tmp_path / "Downloads"


@pytest.fixture
def resolver(store: EntityStore, download_dir: Path) -> DestinationResolver:
    """Destination resolver writing into the test downloads folder."""
    return DestinationResolver(store, download_dir)


@pytest_asyncio.fixture
async def client(
    store: EntityStore, resolver: DestinationResolver
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client bound to the test store."""
    # Import here to ensure env vars are set
    from logbook.dependencies import get_resolver
    from logbook.main import create_app

    app = create_app(use_lifespan=False)
    app.state.store = store
    app.dependency_overrides[get_resolver] = lambda: resolver
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def png_bytes() -> bytes:
    """A small binary payload with every byte value."""
    return b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4
