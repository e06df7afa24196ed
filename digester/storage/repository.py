"""Database repository for channels, updates, subscriptions and digests."""

import logging
from datetime import datetime, timedelta

import asyncpg

from digester.channels.schemas import Channel, ChannelType, RawUpdate, Update
from digester.digests.schemas import (
    ChannelList,
    Day,
    Digest,
    Frequency,
    Subscription,
)
from digester.storage.database import Database
from digester.storage.errors import InsertError, InsertErrorKind

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS channels (
    id           SERIAL PRIMARY KEY,
    channel_type TEXT NOT NULL,
    ext_id       TEXT NOT NULL,
    name         TEXT NOT NULL,
    link         TEXT NOT NULL DEFAULT '',
    last_fetched TIMESTAMPTZ,
    last_cleaned TIMESTAMPTZ,
    inserted     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (channel_type, ext_id)
);

CREATE TABLE IF NOT EXISTS updates (
    id         BIGSERIAL PRIMARY KEY,
    channel_id INTEGER NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    ext_id     TEXT,
    title      TEXT NOT NULL,
    url        TEXT NOT NULL,
    published  TIMESTAMPTZ NOT NULL,
    inserted   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (channel_id, url)
);

CREATE INDEX IF NOT EXISTS idx_updates_channel_inserted
    ON updates(channel_id, inserted DESC);

CREATE TABLE IF NOT EXISTS lists (
    id       SERIAL PRIMARY KEY,
    name     TEXT NOT NULL,
    creator  TEXT,
    inserted TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS lists_channels (
    list_id    INTEGER NOT NULL REFERENCES lists(id) ON DELETE CASCADE,
    channel_id INTEGER NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    PRIMARY KEY (list_id, channel_id)
);

CREATE TABLE IF NOT EXISTS subscriptions (
    id         SERIAL PRIMARY KEY,
    email      TEXT NOT NULL,
    channel_id INTEGER,
    list_id    INTEGER,
    frequency  TEXT NOT NULL,
    day        TEXT,
    time       TIME NOT NULL,
    timezone   TEXT NOT NULL DEFAULT 'UTC',
    inserted   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK ((channel_id IS NULL) <> (list_id IS NULL)),
    CHECK ((frequency = 'weekly') = (day IS NOT NULL))
);

CREATE TABLE IF NOT EXISTS digests (
    id              SERIAL PRIMARY KEY,
    subscription_id INTEGER NOT NULL REFERENCES subscriptions(id) ON DELETE CASCADE,
    due             TIMESTAMPTZ NOT NULL,
    sent            TIMESTAMPTZ
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_digests_one_pending
    ON digests(subscription_id) WHERE sent IS NULL;
CREATE INDEX IF NOT EXISTS idx_digests_due_pending
    ON digests(due) WHERE sent IS NULL;
"""

_CHANNELS_DUE_FOR_FETCH_SQL = """
SELECT * FROM channels
WHERE last_fetched IS NULL OR last_fetched < NOW() - $1::interval
ORDER BY last_fetched NULLS FIRST, id
"""

_CHANNELS_DUE_FOR_CLEAN_SQL = """
SELECT * FROM channels
WHERE last_cleaned IS NULL OR last_cleaned < NOW() - $1::interval
ORDER BY last_cleaned NULLS FIRST, id
"""

_INSERT_UPDATE_SQL = """
INSERT INTO updates (channel_id, ext_id, title, url, published)
VALUES ($1, $2, $3, $4, $5)
RETURNING *
"""

_NEWEST_UPDATE_SQL = """
SELECT * FROM updates
WHERE channel_id = $1
ORDER BY inserted DESC, id DESC
LIMIT 1
"""

# OFFSET 1 keeps the newest row so the deduplicator has a reference point
_DELETE_OLD_UPDATES_SQL = """
DELETE FROM updates
WHERE id IN (
    SELECT id FROM updates
    WHERE channel_id = $1 AND inserted < $2
    ORDER BY inserted DESC, id DESC
    OFFSET 1
)
"""

_UPDATES_SINCE_CHANNEL_SQL = """
SELECT * FROM updates
WHERE channel_id = $1
  AND ($2::timestamptz IS NULL OR inserted > $2)
  AND inserted <= $3
ORDER BY inserted, id
"""

_UPDATES_SINCE_LIST_SQL = """
SELECT u.* FROM updates u
JOIN lists_channels lc ON lc.channel_id = u.channel_id
WHERE lc.list_id = $1
  AND ($2::timestamptz IS NULL OR u.inserted > $2)
  AND u.inserted <= $3
ORDER BY u.inserted, u.id
"""

_SUBSCRIPTIONS_WITHOUT_PENDING_SQL = """
SELECT s.* FROM subscriptions s
WHERE NOT EXISTS (
    SELECT 1 FROM digests d
    WHERE d.subscription_id = s.id AND d.sent IS NULL
)
ORDER BY s.id
"""

_LIST_BY_ID_SQL = """
SELECT l.*, COALESCE(
    array_agg(lc.channel_id ORDER BY lc.channel_id)
        FILTER (WHERE lc.channel_id IS NOT NULL),
    '{}'
) AS channel_ids
FROM lists l
LEFT JOIN lists_channels lc ON lc.list_id = l.id
WHERE l.id = $1
GROUP BY l.id
"""


def _affected_rows(status: str) -> int:
    """Parse the row count out of a status string like ``DELETE 3``."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


def _record_to_channel(record) -> Channel:
    return Channel(
        id=record["id"],
        channel_type=ChannelType(record["channel_type"]),
        ext_id=record["ext_id"],
        name=record["name"],
        link=record["link"],
        last_fetched=record["last_fetched"],
        last_cleaned=record["last_cleaned"],
        inserted=record["inserted"],
    )


def _record_to_update(record) -> Update:
    return Update(
        id=record["id"],
        channel_id=record["channel_id"],
        ext_id=record["ext_id"],
        title=record["title"],
        url=record["url"],
        published=record["published"],
        inserted=record["inserted"],
    )


def _record_to_subscription(record) -> Subscription:
    return Subscription(
        id=record["id"],
        email=record["email"],
        channel_id=record["channel_id"],
        list_id=record["list_id"],
        frequency=Frequency(record["frequency"]),
        day=Day(record["day"]) if record["day"] else None,
        time=record["time"],
        timezone=record["timezone"],
        inserted=record["inserted"],
    )


def _record_to_digest(record) -> Digest:
    return Digest(
        id=record["id"],
        subscription_id=record["subscription_id"],
        due=record["due"],
        sent=record["sent"],
    )


class DigesterRepository:
    """
    Storage operations of the fetch, clean and digest pipeline.

    Inserts raise ``InsertError``; a ``DUPLICATE`` kind means the row
    is already there and callers treat it as success.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create all tables and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Digester tables ensured")

    # Channels

    async def find_channels_due_for_fetch(self, interval: timedelta) -> list[Channel]:
        rows = await self._db.fetch(_CHANNELS_DUE_FOR_FETCH_SQL, interval)
        return [_record_to_channel(r) for r in rows]

    async def find_channels_due_for_clean(self, interval: timedelta) -> list[Channel]:
        rows = await self._db.fetch(_CHANNELS_DUE_FOR_CLEAN_SQL, interval)
        return [_record_to_channel(r) for r in rows]

    async def find_channel_by_id(self, channel_id: int) -> Channel | None:
        row = await self._db.fetchrow(
            "SELECT * FROM channels WHERE id = $1", channel_id
        )
        return _record_to_channel(row) if row else None

    async def update_channel_last_fetched(self, channel_id: int) -> None:
        await self._db.execute(
            "UPDATE channels SET last_fetched = NOW() WHERE id = $1", channel_id
        )

    async def update_channels_last_cleaned(self, channel_ids: list[int]) -> int:
        if not channel_ids:
            return 0
        status = await self._db.execute(
            "UPDATE channels SET last_cleaned = NOW() WHERE id = ANY($1::int[])",
            channel_ids,
        )
        return _affected_rows(status)

    # Updates

    async def insert_update(self, channel_id: int, raw: RawUpdate) -> Update:
        """
        Insert a fetched item.

        Raises:
            InsertError: DUPLICATE if the channel already has this url
        """
        try:
            row = await self._db.fetchrow(
                _INSERT_UPDATE_SQL,
                channel_id,
                raw.ext_id,
                raw.title,
                raw.url,
                raw.published,
            )
        except asyncpg.UniqueViolationError as e:
            raise InsertError(InsertErrorKind.DUPLICATE, str(e)) from e
        except asyncpg.PostgresError as e:
            logger.error("Failed to insert update for channel %d: %s", channel_id, e)
            raise InsertError(InsertErrorKind.UNKNOWN, str(e)) from e
        return _record_to_update(row)

    async def find_newest_update(self, channel_id: int) -> Update | None:
        row = await self._db.fetchrow(_NEWEST_UPDATE_SQL, channel_id)
        return _record_to_update(row) if row else None

    async def delete_updates_older_than(self, channel_id: int, cutoff: datetime) -> int:
        """Delete updates inserted before ``cutoff``, keeping the newest one."""
        status = await self._db.execute(_DELETE_OLD_UPDATES_SQL, channel_id, cutoff)
        return _affected_rows(status)

    async def delete_updates_by_id(self, update_ids: list[int]) -> int:
        if not update_ids:
            return 0
        status = await self._db.execute(
            "DELETE FROM updates WHERE id = ANY($1::bigint[])", update_ids
        )
        return _affected_rows(status)

    async def find_updates_ext_ids(self, channel_ids: list[int]) -> dict[int, str]:
        """Map update id to ext_id for all updates of the channels that have one."""
        if not channel_ids:
            return {}
        rows = await self._db.fetch(
            "SELECT id, ext_id FROM updates "
            "WHERE channel_id = ANY($1::int[]) AND ext_id IS NOT NULL",
            channel_ids,
        )
        return {r["id"]: r["ext_id"] for r in rows}

    async def find_updates_since(
        self, subscription: Subscription, since: datetime | None, until: datetime
    ) -> list[Update]:
        """
        Updates of the subscribed channel or list inserted in ``(since, until]``.

        Stamping the digest with the same ``until`` as its ``sent`` time
        makes consecutive digests partition the updates: nothing inserted
        while a digest is being built can be sent twice.
        """
        if subscription.is_list:
            rows = await self._db.fetch(
                _UPDATES_SINCE_LIST_SQL, subscription.list_id, since, until
            )
        else:
            rows = await self._db.fetch(
                _UPDATES_SINCE_CHANNEL_SQL, subscription.channel_id, since, until
            )
        return [_record_to_update(r) for r in rows]

    # Subscriptions and lists

    async def find_subscription_by_id(self, subscription_id: int) -> Subscription | None:
        row = await self._db.fetchrow(
            "SELECT * FROM subscriptions WHERE id = $1", subscription_id
        )
        return _record_to_subscription(row) if row else None

    async def find_subscriptions_without_pending_digest(self) -> list[Subscription]:
        rows = await self._db.fetch(_SUBSCRIPTIONS_WITHOUT_PENDING_SQL)
        return [_record_to_subscription(r) for r in rows]

    async def find_list_by_id(self, list_id: int) -> ChannelList | None:
        row = await self._db.fetchrow(_LIST_BY_ID_SQL, list_id)
        if not row:
            return None
        return ChannelList(
            id=row["id"],
            name=row["name"],
            creator=row["creator"],
            channel_ids=list(row["channel_ids"]),
        )

    # Digests

    async def insert_digest(self, subscription_id: int, due: datetime) -> Digest:
        """
        Schedule the next digest of a subscription.

        Raises:
            InsertError: DUPLICATE if an unsent digest already exists
        """
        try:
            row = await self._db.fetchrow(
                "INSERT INTO digests (subscription_id, due) VALUES ($1, $2) RETURNING *",
                subscription_id,
                due,
            )
        except asyncpg.UniqueViolationError as e:
            raise InsertError(InsertErrorKind.DUPLICATE, str(e)) from e
        except asyncpg.PostgresError as e:
            logger.error(
                "Failed to insert digest for subscription %d: %s", subscription_id, e
            )
            raise InsertError(InsertErrorKind.UNKNOWN, str(e)) from e
        return _record_to_digest(row)

    async def find_due_digests(self, now: datetime) -> list[Digest]:
        rows = await self._db.fetch(
            "SELECT * FROM digests WHERE due <= $1 AND sent IS NULL ORDER BY due, id",
            now,
        )
        return [_record_to_digest(r) for r in rows]

    async def find_previous_sent_digest(self, subscription_id: int) -> Digest | None:
        row = await self._db.fetchrow(
            "SELECT * FROM digests WHERE subscription_id = $1 AND sent IS NOT NULL "
            "ORDER BY sent DESC LIMIT 1",
            subscription_id,
        )
        return _record_to_digest(row) if row else None

    async def mark_digest_sent(self, digest_id: int, sent: datetime | None = None) -> None:
        # Guarded by "sent IS NULL" so a digest is never stamped twice
        await self._db.execute(
            "UPDATE digests SET sent = COALESCE($2, NOW()) WHERE id = $1 AND sent IS NULL",
            digest_id,
            sent,
        )
