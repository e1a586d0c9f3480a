"""Calendar dates and seasons for daily simulation steps.

Date is a small immutable value type built on datetime.date, with the
month/week boundary queries the scheduler needs. Season is a month-range
predicate that may wrap over the end of the year (e.g. November–March).
"""

from __future__ import annotations

import calendar
import datetime
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True, order=True)
class Date:
    """A validated calendar day (proleptic Gregorian)."""
    year: int
    month: int
    day: int

    def __post_init__(self):
        # Raises ValueError for impossible dates such as 2019-02-29.
        datetime.date(self.year, self.month, self.day)

    @classmethod
    def from_string(cls, text: str) -> "Date":
        """Parse 'YYYY-MM-DD'.

        Raises:
            ValueError: If the text is not an ISO calendar date.
        """
        try:
            parts = [int(p) for p in str(text).strip().split("-")]
        except ValueError:
            raise ValueError(f"invalid date string {text!r}, expected YYYY-MM-DD")
        if len(parts) != 3:
            raise ValueError(f"invalid date string {text!r}, expected YYYY-MM-DD")
        return cls(*parts)

    @classmethod
    def from_date(cls, value: datetime.date) -> "Date":
        return cls(value.year, value.month, value.day)

    def to_date(self) -> datetime.date:
        return datetime.date(self.year, self.month, self.day)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    # ── arithmetic ───────────────────────────────────────────────────

    def add_days(self, n: int) -> "Date":
        return Date.from_date(self.to_date() + datetime.timedelta(days=n))

    def next_day(self) -> "Date":
        return self.add_days(1)

    def previous_day(self) -> "Date":
        return self.add_days(-1)

    def add_months(self, n: int) -> "Date":
        """Shift by n months, clamping the day to the target month length."""
        index = self.year * 12 + (self.month - 1) + n
        year, month = divmod(index, 12)
        month += 1
        day = min(self.day, calendar.monthrange(year, month)[1])
        return Date(year, month, day)

    def days_until(self, other: "Date") -> int:
        """Signed number of days from self to other."""
        return (other.to_date() - self.to_date()).days

    def day_of_year(self) -> int:
        return self.to_date().timetuple().tm_yday

    # ── boundaries ───────────────────────────────────────────────────

    def is_leap_year(self) -> bool:
        return calendar.isleap(self.year)

    def last_day_of_month(self) -> "Date":
        return Date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def is_last_day_of_month(self) -> bool:
        return self == self.last_day_of_month()

    def is_last_month_of_year(self) -> bool:
        return self.month == 12

    def is_last_day_of_year(self) -> bool:
        return self.month == 12 and self.day == 31

    def last_day_of_week(self) -> "Date":
        """End of the 7-day week starting at this date.

        A week that would end on or after 24 December is stretched to
        31 December so that no short week is left over at the year end.
        """
        end = self.add_days(6)
        if end.year != self.year or (end.month == 12 and end.day >= 24):
            return Date(self.year, 12, 31)
        return end


def date_range(start: Date, end: Date) -> Iterator[Date]:
    """Every day of the closed range [start, end]; empty if end < start."""
    current = start
    while current <= end:
        yield current
        current = current.next_day()


@dataclass(frozen=True)
class Season:
    """Months [start_month, end_month], wrapping when start > end."""
    start_month: int = 1
    end_month: int = 12

    def __post_init__(self):
        for name in ("start_month", "end_month"):
            value = getattr(self, name)
            if not 1 <= value <= 12:
                raise ValueError(f"Season.{name} must be in 1..12, got {value}")

    def month_in_season(self, month: int) -> bool:
        if self.start_month <= self.end_month:
            return self.start_month <= month <= self.end_month
        return month >= self.start_month or month <= self.end_month

    def __contains__(self, date: Date) -> bool:
        return self.month_in_season(date.month)
