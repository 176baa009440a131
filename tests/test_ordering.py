from datetime import datetime, timezone

from captionsync.streaming.ordering import parse_name_timestamp, segment_order, sort_key


def test_name_timestamp_millis_offset():
    a = segment_order({"name": "segment_20250101_120000_000"})
    b = segment_order({"name": "segment_20250101_120000_500"})
    assert b - a == 500.0


def test_name_timestamp_uses_local_time():
    expected = datetime(2025, 1, 1, 12, 0, 0).timestamp() * 1000 + 250
    assert parse_name_timestamp("segment_20250101_120000_250") == expected


def test_name_timestamp_rejects_invalid_dates():
    assert parse_name_timestamp("segment_20251301_120000_000") is None
    assert parse_name_timestamp("no-timestamp-here") is None


def test_created_at_takes_precedence_over_name():
    created = "2025-01-01T00:00:01Z"
    expected = datetime(2025, 1, 1, 0, 0, 1, tzinfo=timezone.utc).timestamp() * 1000
    order = segment_order({"created_at": created, "name": "segment_20300101_120000_000"})
    assert order == expected


def test_numeric_created_at_is_milliseconds():
    assert segment_order({"created_at": 1234.5}) == 1234.5


def test_unparseable_metadata_falls_back_to_clock():
    order = segment_order({"created_at": "not a date", "name": "whatever"}, now_ms=lambda: 42.0)
    assert order == 42.0
    assert segment_order(None, now_ms=lambda: 7.0) == 7.0


def test_sort_key_breaks_ties_on_id():
    rows = [(5.0, "b"), (5.0, "a"), (1.0, "z")]
    assert sorted(rows, key=lambda r: sort_key(*r)) == [(1.0, "z"), (5.0, "a"), (5.0, "b")]
