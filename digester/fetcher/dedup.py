"""
Selection of genuinely new items from a provider response.

Providers return their whole current window on every fetch, so each
poll sees mostly known items. The uniqueness constraint on
``(channel_id, url)`` catches exact repeats; this module additionally
drops items that are older than what we already stored.

The reference point is the ``inserted`` time of the newest stored
update, not its ``published`` time, because published dates come from
the provider and are unreliable.

Known gap: if a provider publishes two back-dated items within one
poll interval, the second one is older than the first one's
``inserted`` time on the next poll and is never picked up.
"""

from datetime import datetime, timedelta, timezone

from digester.channels.schemas import RawUpdate, Update

DEFAULT_WINDOW = timedelta(days=7)


def select_new(
    fetched: list[RawUpdate],
    last_known: Update | None,
    now: datetime | None = None,
    window: timedelta = DEFAULT_WINDOW,
) -> list[RawUpdate]:
    """
    Filter ``fetched`` down to the items worth inserting.

    Args:
        fetched: Items as returned by the adapter, in provider order
        last_known: Newest stored update of the channel, if any
        now: Reference time for channels without history
        window: Age limit for channels without history

    Returns:
        The accepted items in their original order
    """
    if last_known is None:
        # First fetch: only the recent past, future dates included
        now = now or datetime.now(timezone.utc)
        threshold = now - window
        return [u for u in fetched if u.published >= threshold]

    return [u for u in fetched if u.published > last_known.inserted]
