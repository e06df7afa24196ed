"""Digest scheduling, assembly and delivery."""

from digester.digests.schemas import (
    ChannelList,
    Day,
    Digest,
    DigestGroup,
    DigestUpdate,
    Frequency,
    Subscription,
)

__all__ = [
    "ChannelList",
    "Day",
    "Digest",
    "DigestGroup",
    "DigestUpdate",
    "Frequency",
    "Subscription",
]
