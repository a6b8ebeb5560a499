"""Tests for utils/timezone.py - UTC-everywhere time handling."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from utils.timezone import day_bounds_utc, format_slot, get_zone, now_utc, parse_iso, to_utc


class TestNowUtc:
    """Tests for now_utc()."""

    def test_returns_timezone_aware(self):
        """Result must have tzinfo set (not naive)."""
        assert now_utc().tzinfo is not None

    def test_is_utc(self):
        """Result timezone must be specifically UTC."""
        assert now_utc().tzinfo == timezone.utc


class TestToUtc:
    """Tests for to_utc()."""

    def test_raises_on_naive(self):
        """Naive datetime must raise ValueError."""
        with pytest.raises(ValueError, match="naive"):
            to_utc(datetime(2030, 1, 1, 12, 0, 0))

    def test_converts_other_timezone(self):
        """Chicago 12:00 in January should become UTC 18:00."""
        chicago = datetime(2030, 1, 1, 12, 0, 0, tzinfo=ZoneInfo("America/Chicago"))
        result = to_utc(chicago)
        assert result.tzinfo == timezone.utc
        assert result.hour == 18


class TestGetZone:
    """Tests for get_zone()."""

    def test_known_zone(self):
        assert get_zone("Europe/London") == ZoneInfo("Europe/London")

    def test_raises_on_unknown(self):
        with pytest.raises(ValueError, match="Unknown timezone"):
            get_zone("Not/A/Timezone")


class TestDayBoundsUtc:
    """Tests for day_bounds_utc()."""

    def test_utc_default(self):
        start, end = day_bounds_utc(date(2030, 6, 3))
        assert start == datetime(2030, 6, 3, tzinfo=timezone.utc)
        assert end == datetime(2030, 6, 4, tzinfo=timezone.utc)

    def test_fall_back_day_is_25_hours(self):
        """London leaves summer time on the last Sunday of October."""
        start, end = day_bounds_utc(date(2030, 10, 27), "Europe/London")
        assert end - start == timedelta(hours=25)


class TestFormatSlot:
    """Tests for format_slot()."""

    def test_renders_in_zone(self):
        """18:00 UTC is noon in Chicago in January."""
        slot = format_slot(datetime(2030, 1, 7, 18, 0, tzinfo=timezone.utc), "America/Chicago")
        assert slot == "Mon 07 Jan 2030 at 12:00 CST"

    def test_defaults_to_utc(self):
        slot = format_slot(datetime(2030, 1, 7, 9, 30, tzinfo=timezone.utc))
        assert slot == "Mon 07 Jan 2030 at 09:30 UTC"


class TestParseIso:
    """Tests for parse_iso()."""

    def test_handles_zulu(self):
        """ISO string with Z suffix should parse to UTC."""
        result = parse_iso("2030-01-01T12:00:00Z")
        assert result.tzinfo == timezone.utc
        assert result.hour == 12

    def test_handles_offset(self):
        """12:00-06:00 is 18:00 UTC."""
        result = parse_iso("2030-01-01T12:00:00-06:00")
        assert result.tzinfo == timezone.utc
        assert result.hour == 18

    def test_raises_on_naive(self):
        """ISO string without timezone must raise ValueError."""
        with pytest.raises(ValueError, match="timezone"):
            parse_iso("2030-01-01T12:00:00")
