"""
Subscription, digest and digest content models.

Rows of the ``subscriptions``, ``lists`` and ``digests`` tables are
dataclasses; the content handed to the email provider is pydantic so it
serializes straight into the provider request.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum

from pydantic import BaseModel, Field


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class Day(str, Enum):
    """Day of week, ordered Monday first like ``datetime.weekday()``."""

    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @property
    def index(self) -> int:
        return list(Day).index(self)


@dataclass
class Subscription:
    """
    A user's subscription to a channel or a list.

    Exactly one of ``channel_id`` and ``list_id`` is set, and ``day`` is
    required for weekly subscriptions only.
    """

    id: int
    email: str
    frequency: Frequency
    time: time
    channel_id: int | None = None
    list_id: int | None = None
    day: Day | None = None
    timezone: str = "UTC"
    inserted: datetime | None = None

    def __post_init__(self) -> None:
        if (self.channel_id is None) == (self.list_id is None):
            raise ValueError(
                f"Subscription {self.id} must target exactly one of channel or list"
            )
        if self.frequency == Frequency.WEEKLY and self.day is None:
            raise ValueError(f"Weekly subscription {self.id} needs a day")
        if self.frequency == Frequency.DAILY and self.day is not None:
            raise ValueError(f"Daily subscription {self.id} cannot have a day")

    @property
    def is_list(self) -> bool:
        return self.list_id is not None


@dataclass
class ChannelList:
    """A curated, named set of channels."""

    id: int
    name: str
    creator: str | None = None
    channel_ids: list[int] = field(default_factory=list)


@dataclass
class Digest:
    """A scheduled (``sent`` is None) or delivered digest."""

    id: int
    subscription_id: int
    due: datetime
    sent: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.sent is None


class DigestUpdate(BaseModel):
    """One line of a digest email."""

    title: str
    url: str


class DigestGroup(BaseModel):
    """Updates of one subscription, titled with the channel or list name."""

    title: str
    updates: list[DigestUpdate] = Field(default_factory=list)
