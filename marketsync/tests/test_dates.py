"""
Unit tests for date helpers.
"""

from datetime import datetime, timezone

from marketsync.utils.dates import (
    DateRange,
    calculate_date_range,
    filter_by_date,
    next_date_from,
    parse_iso,
    to_iso_utc,
)


class TestIsoFormatting:
    """Test the single timestamp interchange format."""

    def test_to_iso_utc_milliseconds(self):
        """Test UTC formatting with millisecond precision."""
        value = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)
        assert to_iso_utc(value) == "2024-01-15T10:30:00.123Z"

    def test_to_iso_utc_seconds(self):
        """Test second precision used for Ozon filters."""
        value = datetime(2024, 1, 15, 10, 30, 0, 999000, tzinfo=timezone.utc)
        assert to_iso_utc(value, timespec="seconds") == "2024-01-15T10:30:00Z"

    def test_parse_naive_uses_default_zone(self):
        """Test naive timestamps are read in the given zone."""
        parsed = parse_iso("2024-01-15T13:30:00")
        assert parsed == datetime(2024, 1, 15, 13, 30, tzinfo=timezone.utc)

    def test_parse_z_suffix(self):
        """Test Z suffixed timestamps parse as UTC."""
        parsed = parse_iso("2024-01-15T10:30:00.500Z")
        assert parsed.utcoffset().total_seconds() == 0
        assert parsed.microsecond == 500000


class TestNextDateFrom:
    """Test the statistics API continuation boundary."""

    def test_adds_one_millisecond_moscow(self):
        """Test a naive Moscow timestamp advances by 1ms and converts to UTC."""
        assert next_date_from("2024-01-15T13:30:00") == "2024-01-15T10:30:00.001Z"

    def test_explicit_offset_is_kept(self):
        """Test timestamps carrying an offset are not shifted to Moscow."""
        assert next_date_from("2024-01-15T10:30:00.999Z") == "2024-01-15T10:30:01.000Z"


class TestDateRange:
    """Test the rolling sync window."""

    def test_excludes_today(self):
        """Test the window ends 1ms before Moscow midnight."""
        now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
        window = calculate_date_range(30, exclude_today=True, now=now)

        assert to_iso_utc(window.date_from) == "2024-02-08T21:00:00.000Z"
        assert to_iso_utc(window.date_to) == "2024-03-09T20:59:59.999Z"

    def test_includes_today(self):
        """Test the window ends now when today is included."""
        now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
        window = calculate_date_range(1, exclude_today=False, now=now)
        assert window.date_to == now

    def test_human_readable(self):
        """Test the window renders as Moscow calendar dates."""
        now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
        window = calculate_date_range(30, now=now)
        assert window.human_readable == "09.02.2024 - 09.03.2024"


class TestFilterByDate:
    """Test window filtering of raw records."""

    def test_filters_inside_window(self):
        """Test only records dated inside the window are kept."""
        window = DateRange(
            date_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
            date_to=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )
        records = [
            {"srid": "a", "date": "2023-12-31T23:00:00Z"},
            {"srid": "b", "date": "2024-01-10T12:00:00Z"},
            {"srid": "c", "date": "2024-02-01T00:00:00Z"},
            {"srid": "d"},
        ]
        kept = filter_by_date(records, "date", window)
        assert [r["srid"] for r in kept] == ["b"]
