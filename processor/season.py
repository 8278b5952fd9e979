"""Season calendar math for the nine-week summer season."""
from datetime import date, datetime, timedelta
from typing import Union

from processor.models import DateRange

SEASON_WEEKS = 9


def fourth_sunday_of_june(year: int) -> date:
    """
    Find the 4th Sunday of June by walking the days of the month.

    Args:
        year: Season year

    Returns:
        Date of the 4th Sunday
    """
    current = date(year, 6, 1)
    sunday_count = 0
    while current.month == 6:
        # date.weekday(): Monday == 0, Sunday == 6
        if current.weekday() == 6:
            sunday_count += 1
            if sunday_count == 4:
                return current
        current += timedelta(days=1)
    raise ValueError(f"Could not find 4th Sunday of June {year}")


def season_range(year: int) -> DateRange:
    """Return the 9-week season for a year as an inclusive date range."""
    start = fourth_sunday_of_june(year)
    end = start + timedelta(days=SEASON_WEEKS * 7 - 1)
    return DateRange(start=start, end=end)


def week_of(moment: Union[date, datetime]) -> int:
    """
    Calculate the season week (1-9) for a date or datetime.

    Dates before the season clamp to week 1 and dates after it clamp to
    week 9. Datetimes are compared on their own wall clock, so an aware
    datetime is evaluated in its own timezone.
    """
    if isinstance(moment, datetime):
        moment = moment.replace(tzinfo=None)
    else:
        moment = datetime(moment.year, moment.month, moment.day)

    fourth_sunday = fourth_sunday_of_june(moment.year)
    season_start = datetime(fourth_sunday.year, fourth_sunday.month, fourth_sunday.day)
    week_number = (moment - season_start) // timedelta(days=7) + 1
    return max(1, min(SEASON_WEEKS, week_number))
