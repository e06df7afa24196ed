"""
Channel and update models.

``RawUpdate`` and ``ChannelInfo`` are what adapters return; ``Channel``
and ``Update`` mirror rows of the ``channels`` and ``updates`` tables.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ChannelType(str, Enum):
    """Supported update sources."""

    GITHUB_RELEASE = "github_release"
    RSS_FEED = "rss_feed"
    TWITTER = "twitter"


class RawUpdate(BaseModel):
    """
    One item as reported by a provider.

    ``published`` is declared by the provider and is not trusted for
    ordering; see ``digester.fetcher.dedup``.
    """

    title: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    published: datetime
    ext_id: str | None = Field(
        default=None,
        description="Provider id of the item, only set for tweets",
    )

    @field_validator("title")
    @classmethod
    def normalize_title(cls, v: str) -> str:
        return " ".join(v.split())

    @field_validator("published")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are interpreted as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ChannelInfo(BaseModel):
    """A channel found by a provider search."""

    name: str
    ext_id: str = Field(..., description="Canonical identifier stored on the channel")
    link: str

    def is_same_feed(self, other: "ChannelInfo") -> bool:
        """Feeds exposed both as RSS and Atom share name and link."""
        if self.ext_id == other.ext_id:
            return True
        return self.name == other.name and self.link == other.link


@dataclass
class Channel:
    """A pollable source stored in the ``channels`` table."""

    id: int
    channel_type: ChannelType
    ext_id: str
    name: str
    link: str = ""
    last_fetched: datetime | None = None
    last_cleaned: datetime | None = None
    inserted: datetime | None = None


@dataclass
class Update:
    """A persisted item of a channel."""

    id: int
    channel_id: int
    title: str
    url: str
    published: datetime
    inserted: datetime
    ext_id: str | None = None
