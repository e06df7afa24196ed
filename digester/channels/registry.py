"""Lookup table from channel type to adapter instance."""

import logging

from digester.channels.base import ChannelAdapter
from digester.channels.github import GithubReleaseAdapter
from digester.channels.rss import RssAdapter
from digester.channels.schemas import ChannelType
from digester.channels.twitter import TwitterAdapter
from digester.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def build_adapters(settings: Settings | None = None) -> dict[ChannelType, ChannelAdapter]:
    """
    Create adapters based on available configuration.

    RSS needs no credentials and is always enabled. Channels whose type
    is missing from the result fail as technical errors in the poller.
    """
    settings = settings or get_settings()
    adapters: dict[ChannelType, ChannelAdapter] = {}

    adapters[ChannelType.RSS_FEED] = RssAdapter(rate_limit=settings.rss_rate_limit)

    if settings.github_configured:
        adapters[ChannelType.GITHUB_RELEASE] = GithubReleaseAdapter(
            api_token=settings.github_api_token,
            rate_limit=settings.github_rate_limit,
        )
        logger.info("GitHub release adapter enabled")
    else:
        logger.warning("GitHub token not configured, release channels disabled")

    if settings.twitter_configured:
        adapters[ChannelType.TWITTER] = TwitterAdapter(
            bearer_token=settings.twitter_bearer_token,
            rate_limit=settings.twitter_rate_limit,
        )
        logger.info("Twitter adapter enabled")
    else:
        logger.warning("Twitter bearer token not configured, twitter channels disabled")

    return adapters
