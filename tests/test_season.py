"""Unit tests for season date math."""
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from processor.models import DateRange
from processor.season import SEASON_WEEKS, fourth_sunday_of_june, season_range, week_of


class TestFourthSundayOfJune:

    @pytest.mark.parametrize('year, expected', [
        (2024, date(2024, 6, 23)),
        (2025, date(2025, 6, 22)),
        (2026, date(2026, 6, 28)),
    ])
    def test_known_years(self, year, expected):
        assert fourth_sunday_of_june(year) == expected

    def test_is_always_a_sunday_in_june(self):
        for year in range(2000, 2040):
            sunday = fourth_sunday_of_june(year)
            assert sunday.weekday() == 6
            assert sunday.month == 6
            assert 22 <= sunday.day <= 28


class TestSeasonRange:

    def test_season_2025(self):
        assert season_range(2025) == DateRange(start=date(2025, 6, 22), end=date(2025, 8, 23))

    def test_season_splits_into_nine_weeks(self):
        chunks = season_range(2025).weekly_chunks()

        assert len(chunks) == SEASON_WEEKS
        assert chunks[0] == DateRange(start=date(2025, 6, 22), end=date(2025, 6, 28))
        assert chunks[-1].end == date(2025, 8, 23)


class TestWeekOf:

    def test_first_day_of_season_is_week_one(self):
        assert week_of(datetime(2025, 6, 22, 9, 0)) == 1

    def test_week_boundaries(self):
        assert week_of(datetime(2025, 6, 28, 23, 59)) == 1
        assert week_of(date(2025, 6, 29)) == 2
        assert week_of(date(2025, 8, 16)) == 8
        assert week_of(date(2025, 8, 17)) == 9

    def test_clamped_before_and_after_season(self):
        assert week_of(date(2025, 1, 15)) == 1
        assert week_of(datetime(2025, 10, 1, 9, 0)) == 9

    def test_aware_datetime_uses_its_own_wall_clock(self):
        # 23:30 local on the last day of week 1 is already week 2 in UTC
        local = datetime(2025, 6, 28, 23, 30, tzinfo=ZoneInfo('America/New_York'))
        assert week_of(local) == 1

    def test_monotonic_through_the_year(self):
        day = date(2025, 1, 1)
        previous = week_of(day)
        while day.year == 2025:
            current = week_of(day)
            assert current >= previous
            assert 1 <= current <= SEASON_WEEKS
            previous = current
            day += timedelta(days=1)
