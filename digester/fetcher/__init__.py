"""Fetching and cleaning of channel updates."""

from digester.fetcher.cleaner import ChannelCleaner, CleanReport
from digester.fetcher.dedup import select_new
from digester.fetcher.poller import ChannelPoller, PollReport

__all__ = [
    "ChannelCleaner",
    "ChannelPoller",
    "CleanReport",
    "PollReport",
    "select_new",
]
