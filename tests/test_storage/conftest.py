"""Shared fixtures for storage tests."""

from datetime import datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from digester.storage.repository import DigesterRepository


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 0")
    return db


@pytest.fixture
def repository(mock_database) -> DigesterRepository:
    return DigesterRepository(mock_database)


@pytest.fixture
def channel_row() -> dict:
    """A dict mimicking an asyncpg Record for a channel."""
    return {
        "id": 1,
        "channel_type": "github_release",
        "ext_id": "rust-lang/rust",
        "name": "rust-lang/rust",
        "link": "https://github.com/rust-lang/rust",
        "last_fetched": None,
        "last_cleaned": None,
        "inserted": datetime(2020, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def update_row() -> dict:
    """A dict mimicking an asyncpg Record for an update."""
    return {
        "id": 42,
        "channel_id": 1,
        "ext_id": None,
        "title": "Rust 1.41.0",
        "url": "https://github.com/rust-lang/rust/releases/tag/1.41.0",
        "published": datetime(2020, 1, 30, tzinfo=timezone.utc),
        "inserted": datetime(2020, 1, 30, 6, tzinfo=timezone.utc),
    }


@pytest.fixture
def subscription_row() -> dict:
    """A dict mimicking an asyncpg Record for a weekly list subscription."""
    return {
        "id": 3,
        "email": "reader@example.com",
        "channel_id": None,
        "list_id": 5,
        "frequency": "weekly",
        "day": "fri",
        "time": time(18, 30),
        "timezone": "Europe/Zurich",
        "inserted": datetime(2020, 1, 1, tzinfo=timezone.utc),
    }
