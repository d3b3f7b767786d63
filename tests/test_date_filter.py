"""Tests for date filters, range parsing and datetime helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from taskboard.errors import InvalidRange, InvalidRequest
from taskboard.services.date_filter import DEFAULT_RANGE_DAYS, build_filter, parse_range
from taskboard.utils.datetime import days_between, ensure_aware, parse_datetime, utc_date


class TestBuildFilter:
    def test_cutoff_is_now_minus_range(self, now):
        date_filter = build_filter(7, now=now)
        assert date_filter.cutoff == now - timedelta(days=7)
        assert date_filter.now == now
        assert date_filter.range_days == 7

    def test_default_range(self, now):
        assert build_filter(now=now).range_days == DEFAULT_RANGE_DAYS == 30

    def test_days_in_range(self, now):
        assert build_filter(14, now=now).days_in_range == 14

    @pytest.mark.parametrize("value", [0, -1, -30])
    def test_non_positive_range_is_rejected(self, now, value):
        with pytest.raises(InvalidRange) as exc_info:
            build_filter(value, now=now)
        assert exc_info.value.field_name == "date_range"

    @pytest.mark.parametrize("value", ["30", 7.5, True])
    def test_non_integer_range_is_rejected(self, now, value):
        with pytest.raises(InvalidRange):
            build_filter(value, now=now)

    def test_naive_now_is_treated_as_utc(self):
        date_filter = build_filter(7, now=datetime(2024, 1, 10, 12, 0))
        assert date_filter.now.tzinfo == timezone.utc


class TestParseRange:
    @pytest.mark.parametrize("value,expected", [("7", 7), (" 14 ", 14), (90, 90), (None, 30), ("", 30)])
    def test_valid_values(self, value, expected):
        assert parse_range(value) == expected

    @pytest.mark.parametrize("value", ["abc", "7.5", "0", "-7", 0, False])
    def test_invalid_values(self, value):
        with pytest.raises(InvalidRange):
            parse_range(value)

    def test_allowed_set(self):
        assert parse_range("60", allowed=[7, 14, 30, 60, 90]) == 60
        with pytest.raises(InvalidRange) as exc_info:
            parse_range("45", allowed=[7, 14, 30, 60, 90])
        assert "7, 14, 30, 60, 90" in str(exc_info.value)

    def test_invalid_range_is_an_invalid_request(self):
        with pytest.raises(InvalidRequest):
            parse_range("soon")


class TestDatetimeHelpers:
    def test_days_between_is_ceiling(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert days_between(start, start + timedelta(days=2, hours=1)) == 3
        assert days_between(start, start + timedelta(days=2)) == 2

    def test_days_between_never_negative(self):
        start = datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert days_between(start, start - timedelta(days=1)) == 0

    def test_parse_datetime_variants(self):
        assert parse_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert parse_datetime(date(2024, 3, 1)) == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert parse_datetime("") is None
        assert parse_datetime(None) is None

    def test_ensure_aware_converts_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        converted = ensure_aware(datetime(2024, 3, 1, 1, 0, tzinfo=plus_two))
        assert converted == datetime(2024, 2, 29, 23, 0, tzinfo=timezone.utc)
        assert utc_date(converted) == date(2024, 2, 29)
