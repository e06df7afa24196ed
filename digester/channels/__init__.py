"""Channel adapters - one per update source type."""

from digester.channels.base import ChannelAdapter
from digester.channels.errors import (
    ChannelError,
    FetchError,
    SearchError,
    SearchErrorKind,
    ValidationError,
)
from digester.channels.registry import build_adapters
from digester.channels.schemas import (
    Channel,
    ChannelInfo,
    ChannelType,
    RawUpdate,
    Update,
)

__all__ = [
    "Channel",
    "ChannelAdapter",
    "ChannelError",
    "ChannelInfo",
    "ChannelType",
    "FetchError",
    "RawUpdate",
    "SearchError",
    "SearchErrorKind",
    "Update",
    "ValidationError",
    "build_adapters",
]
