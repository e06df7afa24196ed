"""Tests for new-item selection."""

from datetime import datetime, timedelta, timezone

from digester.fetcher.dedup import select_new

NOW = datetime(2020, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestFirstFetch:
    """Channel without stored updates."""

    def test_keeps_last_seven_days_inclusive(self, raw_factory) -> None:
        fetched = [
            raw_factory("exactly seven days", NOW - timedelta(days=7)),
            raw_factory("just too old", NOW - timedelta(days=7, seconds=1)),
            raw_factory("yesterday", NOW - timedelta(days=1)),
        ]

        selected = select_new(fetched, None, now=NOW)

        assert [u.title for u in selected] == ["exactly seven days", "yesterday"]

    def test_keeps_future_dates(self, raw_factory) -> None:
        fetched = [raw_factory("from the future", NOW + timedelta(hours=3))]

        assert select_new(fetched, None, now=NOW) == fetched

    def test_custom_window(self, raw_factory) -> None:
        fetched = [raw_factory("two days", NOW - timedelta(days=2))]

        assert select_new(fetched, None, now=NOW, window=timedelta(days=1)) == []


class TestWithLastKnown:
    """Channel with a newest stored update."""

    def test_strictly_after_inserted(self, raw_factory, update_factory) -> None:
        last = update_factory(inserted=NOW)
        fetched = [
            raw_factory("equal", NOW),
            raw_factory("after", NOW + timedelta(microseconds=1)),
            raw_factory("before", NOW - timedelta(minutes=1)),
        ]

        selected = select_new(fetched, last)

        assert [u.title for u in selected] == ["after"]

    def test_compares_against_inserted_not_published(
        self, raw_factory, update_factory
    ) -> None:
        # Provider back-dated the last item; its insertion time is what counts
        last = update_factory(inserted=NOW)
        last.published = NOW - timedelta(days=3)
        fetched = [raw_factory("published after old date", NOW - timedelta(days=1))]

        assert select_new(fetched, last) == []

    def test_preserves_order(self, raw_factory, update_factory) -> None:
        last = update_factory(inserted=NOW)
        fetched = [
            raw_factory("b", NOW + timedelta(hours=2)),
            raw_factory("a", NOW + timedelta(hours=1)),
            raw_factory("c", NOW + timedelta(hours=3)),
        ]

        assert [u.title for u in select_new(fetched, last)] == ["b", "a", "c"]

    def test_back_dated_pair_loses_second_item(self, raw_factory, update_factory) -> None:
        """Two items back-dated to midnight within one interval: the second is missed."""
        midnight = datetime(2020, 1, 15, tzinfo=timezone.utc)

        first_poll = select_new([raw_factory("first", midnight)], update_factory(
            inserted=midnight - timedelta(hours=1)
        ))
        assert [u.title for u in first_poll] == ["first"]

        # "first" got inserted at 06:00; "second" appears later, also dated midnight
        stored_first = update_factory(inserted=midnight + timedelta(hours=6))
        second_poll = select_new(
            [raw_factory("second", midnight), raw_factory("first", midnight)],
            stored_first,
        )
        assert second_poll == []
