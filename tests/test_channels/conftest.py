"""Shared fixtures for channel adapter tests."""

from functools import partial

import pytest

from digester.channels.http_client import HTTPClient, RetryConfig

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <description>Posts</description>
    <item>
      <title>Second post</title>
      <link>https://example.com/second</link>
      <pubDate>Tue, 28 Jan 2020 10:00:48 +0200</pubDate>
    </item>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <pubDate>Tue, 10 Dec 2019 16:00:00</pubDate>
    </item>
    <item>
      <title>No link</title>
      <pubDate>Tue, 10 Dec 2019 16:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Example Channel</title>
  <link rel="alternate" href="https://example.com/channel"/>
  <link rel="self" href="https://example.com/atom.xml"/>
  <id>urn:example:channel</id>
  <updated>2020-01-28T10:00:00Z</updated>
  <entry>
    <title>A video</title>
    <id>urn:example:video:1</id>
    <link rel="self" href="https://example.com/api/video/1"/>
    <link rel="alternate" href="https://example.com/watch?v=1"/>
    <updated>2020-01-28T09:30:00Z</updated>
  </entry>
</feed>
"""

HTML_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <title>Example</title>
    <link rel="alternate" type="application/rss+xml" title="RSS" href="/feed.xml">
    <link rel="alternate" type="application/atom+xml" title="Atom" href="https://example.com/atom.xml">
    <link rel="stylesheet" href="/style.css">
  </head>
  <body>Hello</body>
</html>
"""


@pytest.fixture
def fast_client():
    """HTTPClient factory that never retries, so tests do not sleep."""
    return partial(HTTPClient, retry_config=RetryConfig(max_retries=0), timeout=5.0)


@pytest.fixture
def rss_feed() -> str:
    return RSS_FEED


@pytest.fixture
def atom_feed() -> str:
    return ATOM_FEED


@pytest.fixture
def html_page() -> str:
    return HTML_PAGE
