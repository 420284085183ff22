"""Tests for formatting utilities."""

from datetime import date, datetime, timedelta, timezone

from field_report.utils.formatters import (
    format_time_ago,
    parse_iso,
    report_key,
    today_date_string,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestParseIso:
    def test_offset_kept(self):
        parsed = parse_iso("2025-06-01T08:00:00+00:00")
        assert parsed == datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)

    def test_z_suffix(self):
        assert parse_iso("2025-06-01T08:00:00Z").tzinfo is not None

    def test_naive_is_utc(self):
        assert parse_iso("2025-06-01T08:00:00").tzinfo == timezone.utc

    def test_empty_and_garbage(self):
        assert parse_iso(None) is None
        assert parse_iso("") is None
        assert parse_iso("yesterday") is None


class TestFormatTimeAgo:
    def test_just_now(self):
        assert format_time_ago(NOW - timedelta(seconds=30), NOW) == "just now"

    def test_minutes(self):
        assert format_time_ago(NOW - timedelta(minutes=12), NOW) == \
            "12 minutes ago"

    def test_hours(self):
        assert format_time_ago(NOW - timedelta(hours=3), NOW) == "3 hours ago"

    def test_days(self):
        assert format_time_ago(NOW - timedelta(days=2), NOW) == "2 days ago"

    def test_unknown(self):
        assert format_time_ago(None) == "at an unknown time"


class TestKeysAndDates:
    def test_today_date_string(self):
        assert today_date_string(date(2025, 1, 5)) == "2025-01-05"

    def test_report_key(self):
        assert report_key("p1", "2025-06-01") == "p1_2025-06-01"
