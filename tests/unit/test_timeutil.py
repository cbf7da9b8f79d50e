"""Tests for business-timezone normalization."""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import ValidationError
from app.core.scheduling.timeutil import (
    format_local,
    format_range,
    local_datetime,
    parse_instant,
    to_local,
    weekday_name,
)

UTC = timezone.utc


class TestParseInstant:
    """Test parse_instant input forms."""

    def test_naive_string_is_business_local(self):
        """'YYYY-MM-DD HH:MM' is read as UTC-3 wall clock."""
        assert parse_instant("2025-03-10 14:00") == datetime(2025, 3, 10, 17, 0, tzinfo=UTC)

    def test_naive_iso_t_separator(self):
        assert parse_instant("2025-03-10T14:00:00") == datetime(2025, 3, 10, 17, 0, tzinfo=UTC)

    def test_explicit_offset_is_literal(self):
        assert parse_instant("2025-03-10T14:00:00-03:00") == datetime(
            2025, 3, 10, 17, 0, tzinfo=UTC
        )
        assert parse_instant("2025-03-10T14:00:00+00:00") == datetime(
            2025, 3, 10, 14, 0, tzinfo=UTC
        )

    def test_z_suffix(self):
        assert parse_instant("2025-03-10T17:00:00Z") == datetime(2025, 3, 10, 17, 0, tzinfo=UTC)

    def test_compact_offset(self):
        assert parse_instant("2025-03-10T14:00:00-0300") == datetime(
            2025, 3, 10, 17, 0, tzinfo=UTC
        )

    def test_brazilian_format(self):
        assert parse_instant("10/03/2025 14:00") == datetime(2025, 3, 10, 17, 0, tzinfo=UTC)

    def test_naive_datetime_is_business_local(self):
        assert parse_instant(datetime(2025, 3, 10, 14, 0)) == datetime(
            2025, 3, 10, 17, 0, tzinfo=UTC
        )

    def test_aware_datetime_is_converted(self):
        value = datetime(2025, 3, 10, 14, 0, tzinfo=timezone(timedelta(hours=-3)))
        result = parse_instant(value)
        assert result == datetime(2025, 3, 10, 17, 0, tzinfo=UTC)
        assert result.tzinfo == UTC

    def test_epoch_seconds_and_milliseconds(self):
        expected = datetime(2025, 3, 10, 17, 0, tzinfo=UTC)
        seconds = int(expected.timestamp())
        assert parse_instant(seconds) == expected
        assert parse_instant(seconds * 1000) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", "31/02/2025 10:00", True])
    def test_invalid_input_raises(self, value):
        with pytest.raises(ValidationError):
            parse_instant(value)


class TestLocalConversions:
    """Test wall-clock helpers."""

    def test_local_datetime_round_trip(self):
        instant = local_datetime(2025, 3, 10, 8, 0)
        assert instant == datetime(2025, 3, 10, 11, 0, tzinfo=UTC)
        assert to_local(instant).hour == 8

    def test_late_evening_utc_is_same_local_day(self):
        """23:00 local is 02:00 UTC on the next day."""
        instant = local_datetime(2025, 3, 10, 23, 0)
        assert instant.day == 11
        assert to_local(instant).day == 10

    def test_format_local(self):
        assert format_local(local_datetime(2025, 3, 10, 14, 0)) == "10/03/2025 14:00"

    def test_format_range(self):
        start = local_datetime(2025, 3, 10, 14, 0)
        assert format_range(start, start + timedelta(hours=1)) == "10/03/2025 14:00 - 15:00"

    def test_weekday_name(self):
        assert weekday_name(local_datetime(2025, 3, 10, 14, 0)) == "segunda-feira"
        assert weekday_name(local_datetime(2025, 3, 15, 10, 0)) == "sábado"
