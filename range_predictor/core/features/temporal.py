"""Calendar driven features: weekday, month, holiday and earnings proximity."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Sequence

import pandas as pd
from pandas.tseries.holiday import (
    AbstractHolidayCalendar,
    GoodFriday,
    Holiday,
    USLaborDay,
    USMartinLutherKingJr,
    USMemorialDay,
    USPresidentsDay,
    USThanksgivingDay,
    nearest_workday,
    sunday_to_monday,
)

LOGGER = logging.getLogger(__name__)


class NYSEHolidayCalendar(AbstractHolidayCalendar):
    """Full-day closures of the New York Stock Exchange."""

    rules = [
        Holiday("New Year's Day", month=1, day=1, observance=sunday_to_monday),
        USMartinLutherKingJr,
        USPresidentsDay,
        GoodFriday,
        USMemorialDay,
        Holiday("Juneteenth", month=6, day=19, start_date="2022-06-19", observance=nearest_workday),
        Holiday("Independence Day", month=7, day=4, observance=nearest_workday),
        USLaborDay,
        USThanksgivingDay,
        Holiday("Christmas Day", month=12, day=25, observance=nearest_workday),
    ]


def market_holidays(start_year: int, end_year: int) -> tuple[date, ...]:
    """NYSE holidays falling in ``start_year`` through ``end_year`` inclusive."""

    observed = NYSEHolidayCalendar().holidays(start=f"{start_year}-01-01", end=f"{end_year}-12-31")
    return tuple(timestamp.date() for timestamp in observed)

# Month/day on which each quarterly earnings season opens.
EARNINGS_SEASON_STARTS: tuple[tuple[int, int], ...] = ((1, 6), (4, 7), (7, 7), (10, 6))

NO_HOLIDAY_DISTANCE = 365
WEEKDAY_FLAGS = (
    "IsMondayEffect",
    "IsTuesdayEffect",
    "IsWednesdayEffect",
    "IsThursdayEffect",
    "IsFridayEffect",
)


def week_of_month(day: date) -> int:
    """Calendar week of ``day`` within its month, weeks starting on Sunday."""

    first = day.replace(day=1)
    first_weekday = (first.weekday() + 1) % 7  # Sunday = 0
    return (day.day + first_weekday - 1) // 7 + 1


def third_friday(year: int, month: int) -> date:
    first = date(year, month, 1)
    offset = (calendar.FRIDAY - first.weekday()) % 7
    return first + timedelta(days=offset + 14)


def is_options_expiration_week(day: date) -> bool:
    """True when ``day`` falls in the Monday-Sunday week holding the third Friday."""

    friday = third_friday(day.year, day.month)
    week_start = friday - timedelta(days=friday.weekday())
    return week_start <= day <= week_start + timedelta(days=6)


def quarter_bounds(day: date) -> tuple[date, date]:
    quarter = (day.month - 1) // 3
    start = date(day.year, quarter * 3 + 1, 1)
    end_month = quarter * 3 + 3
    end = date(day.year, end_month, calendar.monthrange(day.year, end_month)[1])
    return start, end


@dataclass(slots=True)
class MarketCalendar:
    """Holiday and earnings calendar used to derive the temporal features."""

    holidays: Sequence[date] | None = None
    earnings_season_starts: Sequence[tuple[int, int]] = EARNINGS_SEASON_STARTS
    earnings_window_days: int = 21
    holiday_cap_days: int = 10
    earnings_cap_days: int = 30
    _sorted_holidays: tuple[date, ...] | None = field(init=False, repr=False)
    _rule_holidays: dict[int, tuple[date, ...]] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self) -> None:
        if self.holidays is None:
            self._sorted_holidays = None
        else:
            self._sorted_holidays = tuple(sorted({_as_date(item) for item in self.holidays}))
        if self.earnings_window_days < 0:
            raise ValueError("earnings_window_days must be non-negative.")

    # ------------------------------------------------------------------
    # Holiday proximity
    # ------------------------------------------------------------------
    def holidays_around(self, day: date) -> tuple[date, ...]:
        """Holidays relevant to ``day``.

        An explicit ``holidays`` list is used as given. Otherwise the NYSE rules
        are expanded over the year before and after ``day``.
        """

        if self._sorted_holidays is not None:
            return self._sorted_holidays
        cached = self._rule_holidays.get(day.year)
        if cached is None:
            cached = market_holidays(day.year - 1, day.year + 1)
            self._rule_holidays[day.year] = cached
        return cached

    def holiday_distances(self, day: date) -> tuple[int, int]:
        """Return ``(days_to_next, days_from_previous)`` holiday, uncapped.

        Either side reports 365 when the calendar holds no holiday there.
        """

        holidays = self.holidays_around(day)
        previous = [item for item in holidays if item < day]
        upcoming = [item for item in holidays if item > day]
        days_from = (day - previous[-1]).days if previous else NO_HOLIDAY_DISTANCE
        days_to = (upcoming[0] - day).days if upcoming else NO_HOLIDAY_DISTANCE
        return days_to, days_from

    # ------------------------------------------------------------------
    # Earnings proximity
    # ------------------------------------------------------------------
    def _season_starts(self, years: Iterable[int]) -> list[date]:
        starts = [
            date(year, month, day_of_month)
            for year in years
            for month, day_of_month in self.earnings_season_starts
        ]
        return sorted(starts)

    def earnings_proximity(self, day: date) -> tuple[bool, int, int]:
        """Return ``(in_season, days_to_next_start, days_since_last_window_end)``."""

        window = timedelta(days=self.earnings_window_days)
        starts = self._season_starts((day.year - 1, day.year, day.year + 1))
        in_season = any(start <= day <= start + window for start in starts)

        upcoming = [start for start in starts if start > day]
        finished = [start + window for start in starts if start + window < day]
        days_to = (upcoming[0] - day).days if upcoming else 0
        days_from = (day - finished[-1]).days if finished else 0
        return in_season, max(0, days_to), max(0, days_from)

    # ------------------------------------------------------------------
    # Frame assembly
    # ------------------------------------------------------------------
    def row(self, timestamp: pd.Timestamp | date) -> dict[str, float]:
        day = _as_date(timestamp)
        features: dict[str, float] = {}

        weekday = day.weekday()
        for position, name in enumerate(WEEKDAY_FLAGS):
            features[name] = 1.0 if weekday == position else 0.0

        week = week_of_month(day)
        features["IsFirstWeekOfMonth"] = 1.0 if week == 1 else 0.0
        features["IsSecondWeekOfMonth"] = 1.0 if week == 2 else 0.0
        features["IsThirdWeekOfMonth"] = 1.0 if week == 3 else 0.0
        features["IsFourthWeekOfMonth"] = 1.0 if week >= 4 else 0.0
        features["IsOptionsExpirationWeek"] = 1.0 if is_options_expiration_week(day) else 0.0

        features["IsJanuaryEffect"] = 1.0 if day.month == 1 else 0.0
        features["IsQuarterStart"] = 1.0 if day.month in (1, 4, 7, 10) and day.day <= 7 else 0.0
        features["IsQuarterEnd"] = 1.0 if day.month in (3, 6, 9, 12) and day.day >= 25 else 0.0
        features["IsYearEnd"] = 1.0 if day.month == 12 else 0.0

        days_to, days_from = self.holiday_distances(day)
        features["DaysToMarketHoliday"] = float(min(days_to, self.holiday_cap_days))
        features["DaysFromMarketHoliday"] = float(min(days_from, self.holiday_cap_days))

        quarter_start, quarter_end = quarter_bounds(day)
        days_into = (day - quarter_start).days
        features["DaysIntoQuarter"] = float(days_into)
        features["DaysUntilQuarterEnd"] = float((quarter_end - day).days)
        features["QuarterProgress"] = days_into / (quarter_end - quarter_start).days

        year_start = date(day.year, 1, 1)
        year_end = date(day.year, 12, 31)
        features["YearProgress"] = (day - year_start).days / (year_end - year_start).days

        month_start = day.replace(day=1)
        month_end = day.replace(day=calendar.monthrange(day.year, day.month)[1])
        features["MonthProgress"] = (day - month_start).days / (month_end - month_start).days

        in_season, to_earnings, from_earnings = self.earnings_proximity(day)
        features["IsEarningsSeason"] = 1.0 if in_season else 0.0
        features["DaysToEarningsWeek"] = float(min(to_earnings, self.earnings_cap_days))
        features["DaysFromEarningsWeek"] = float(min(from_earnings, self.earnings_cap_days))
        return features

    def features(self, dates: Iterable[pd.Timestamp | date]) -> pd.DataFrame:
        """Return one row of temporal features per entry of ``dates``."""

        index = pd.DatetimeIndex(pd.to_datetime(list(dates)), name="Date")
        rows = [self.row(timestamp) for timestamp in index]
        frame = pd.DataFrame(rows, index=index, dtype=float)
        LOGGER.debug("Computed temporal features for %d dates", len(frame))
        return frame


def _as_date(value: pd.Timestamp | date | str) -> date:
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, date):
        return value if type(value) is date else date(value.year, value.month, value.day)
    return pd.Timestamp(value).date()


def parse_month_day(values: Iterable[str | tuple[int, int]]) -> tuple[tuple[int, int], ...]:
    """Parse ``"MM-DD"`` strings (or pairs) into month/day tuples."""

    parsed: list[tuple[int, int]] = []
    for value in values:
        if isinstance(value, str):
            month_text, _, day_text = value.strip().partition("-")
            pair = (int(month_text), int(day_text))
        else:
            pair = (int(value[0]), int(value[1]))
        date(2000, *pair)  # validates the pair, leap year included
        parsed.append(pair)
    return tuple(parsed)


__all__ = [
    "EARNINGS_SEASON_STARTS",
    "MarketCalendar",
    "NYSEHolidayCalendar",
    "is_options_expiration_week",
    "market_holidays",
    "parse_month_day",
    "quarter_bounds",
    "third_friday",
    "week_of_month",
]
