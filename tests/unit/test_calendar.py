"""Tests for the day calendar utilities."""
from datetime import date, datetime, timedelta, timezone

import pytest

from devmetrics.errors import ValidationError
from devmetrics.sync.calendar import (
    DateWindow,
    DayBatch,
    batch_contiguous,
    day_key,
    days_in_window,
    end_of_day,
    format_days_with_gaps,
    gaps_between,
    missing_days,
    parse_day_key,
    start_of_day,
)


class TestDayKey:
    def test_date(self):
        assert day_key(date(2025, 3, 7)) == "2025-03-07"

    def test_naive_datetime_taken_as_utc(self):
        assert day_key(datetime(2025, 3, 7, 23, 59)) == "2025-03-07"

    def test_aware_datetime_converted_to_utc(self):
        # 22:00 in UTC-5 is 03:00 the next day in UTC
        tz = timezone(timedelta(hours=-5))
        assert day_key(datetime(2025, 3, 7, 22, 0, tzinfo=tz)) == "2025-03-08"

    @pytest.mark.parametrize(
        "key", ["2024-02-29", "2025-12-31", "2025-01-01", "1999-07-15", "0999-06-01", "0001-01-01"]
    )
    def test_round_trip(self, key):
        assert day_key(parse_day_key(key)) == key

    @pytest.mark.parametrize(
        "bad", ["2025-02-30", "2025-1-05", "20250105", "2025-13-01", "", "yesterday", None]
    )
    def test_malformed_key_raises(self, bad):
        with pytest.raises(ValidationError):
            parse_day_key(bad)


class TestDaysInWindow:
    def test_single_day(self):
        assert days_in_window(date(2025, 1, 1), date(2025, 1, 1)) == ["2025-01-01"]

    def test_crosses_year_boundary(self):
        assert days_in_window(date(2024, 12, 30), date(2025, 1, 2)) == [
            "2024-12-30",
            "2024-12-31",
            "2025-01-01",
            "2025-01-02",
        ]

    def test_leap_day_included(self):
        days = days_in_window(date(2024, 2, 27), date(2024, 3, 1))
        assert days == ["2024-02-27", "2024-02-28", "2024-02-29", "2024-03-01"]

    def test_non_leap_february(self):
        days = days_in_window(date(2025, 2, 27), date(2025, 3, 1))
        assert days == ["2025-02-27", "2025-02-28", "2025-03-01"]

    def test_start_after_end_raises(self):
        with pytest.raises(ValidationError):
            days_in_window(date(2025, 1, 5), date(2025, 1, 1))


class TestDateWindow:
    def test_start_after_end_raises(self):
        with pytest.raises(ValidationError):
            DateWindow(date(2025, 2, 1), date(2025, 1, 1))

    def test_of_accepts_datetimes(self):
        window = DateWindow.of(datetime(2025, 1, 1, 12, 0), datetime(2025, 1, 3, 0, 0))
        assert window.start_key == "2025-01-01"
        assert window.end_key == "2025-01-03"
        assert len(window.days()) == 3

    def test_bounds_span_whole_days(self):
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 3))
        assert window.since == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert window.until.date() == date(2025, 1, 3)
        assert window.until.hour == 23 and window.until.minute == 59

    def test_contains(self):
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 3))
        assert window.contains(datetime(2025, 1, 3, 23, 59, tzinfo=timezone.utc))
        assert not window.contains(datetime(2025, 1, 4, 0, 0, tzinfo=timezone.utc))
        assert not window.contains(None)


class TestBatchContiguous:
    def test_two_batches(self):
        batches = batch_contiguous(
            ["2025-01-01", "2025-01-02", "2025-01-03", "2025-01-05", "2025-01-06"]
        )
        assert batches == [
            DayBatch(date(2025, 1, 1), date(2025, 1, 3)),
            DayBatch(date(2025, 1, 5), date(2025, 1, 6)),
        ]

    def test_unsorted_with_duplicates(self):
        batches = batch_contiguous(["2025-01-03", "2025-01-01", "2025-01-02", "2025-01-02"])
        assert batches == [DayBatch(date(2025, 1, 1), date(2025, 1, 3))]

    def test_empty(self):
        assert batch_contiguous([]) == []

    def test_month_boundary_is_contiguous(self):
        batches = batch_contiguous(["2025-01-31", "2025-02-01"])
        assert len(batches) == 1

    def test_batch_bounds_cover_whole_days(self):
        batch = batch_contiguous(["2025-01-05", "2025-01-06"])[0]
        assert batch.since == start_of_day(date(2025, 1, 5))
        assert batch.until == end_of_day(date(2025, 1, 6))
        assert batch.days() == ["2025-01-05", "2025-01-06"]

    def test_every_day_of_a_batch_was_in_the_input(self):
        keys = ["2025-03-01", "2025-03-02", "2025-03-04", "2025-03-07", "2025-03-08"]
        batches = batch_contiguous(keys)
        assert [d for b in batches for d in b.days()] == keys
        for prev, curr in zip(batches, batches[1:]):
            assert (curr.start - prev.end).days >= 2

    def test_malformed_key_raises(self):
        with pytest.raises(ValidationError):
            batch_contiguous(["2025-01-01", "not-a-day"])


class TestMissingDays:
    def test_set_difference_keeps_order(self):
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 5))
        assert missing_days(window, ["2025-01-02", "2025-01-04"]) == [
            "2025-01-01",
            "2025-01-03",
            "2025-01-05",
        ]

    def test_fully_covered(self):
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 2))
        assert missing_days(window, ["2025-01-01", "2025-01-02", "2025-01-09"]) == []


class TestGapsAndFormatting:
    def test_gaps_between(self):
        batches = batch_contiguous(["2025-01-01", "2025-01-04", "2025-01-05"])
        assert gaps_between(batches) == ["2025-01-02", "2025-01-03"]

    def test_format_days_with_gaps(self):
        text, gaps = format_days_with_gaps(
            ["2025-01-01", "2025-01-02", "2025-01-03", "2025-01-05", "2025-01-06"]
        )
        assert text == "2025-01-01 to 2025-01-03, 2025-01-05 to 2025-01-06"
        assert gaps == ["2025-01-04"]

    def test_single_day_range(self):
        text, gaps = format_days_with_gaps(["2025-01-01", "2025-01-03"])
        assert text == "2025-01-01, 2025-01-03"
        assert gaps == ["2025-01-02"]

    def test_empty(self):
        assert format_days_with_gaps([]) == ("none", [])


def test_low_year_keys_sort_with_modern_keys():
    keys = [day_key(date(999, 6, 1)), day_key(date(2025, 1, 1))]
    assert keys == sorted(keys)
