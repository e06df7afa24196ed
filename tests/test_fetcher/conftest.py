"""Shared fixtures for fetcher tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from digester.channels.schemas import ChannelType


def _adapter(channel_type: ChannelType) -> MagicMock:
    adapter = MagicMock()
    adapter.channel_type = channel_type
    adapter.fetch_updates = AsyncMock(return_value=[])
    adapter.find_deleted = AsyncMock(return_value=[])
    return adapter


@pytest.fixture
def rss_adapter() -> MagicMock:
    """Adapter mock for RSS channels returning no items."""
    return _adapter(ChannelType.RSS_FEED)


@pytest.fixture
def twitter_adapter() -> MagicMock:
    """Adapter mock for Twitter channels reporting nothing deleted."""
    return _adapter(ChannelType.TWITTER)
