"""Date windows used to scope mailbox queries.

Every factory returns a half-open ``[start, end)`` window of calendar dates
plus a display label. ``today`` can be injected for deterministic tests.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class TimePeriod:
    start: dt.date
    end: dt.date  # exclusive
    label: str

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: dt.date) -> bool:
        return self.start <= day < self.end


def _today(today: Optional[dt.date]) -> dt.date:
    return today or dt.date.today()


def _add_months(first: dt.date, months: int) -> dt.date:
    # first must be the first day of a month
    idx = first.year * 12 + (first.month - 1) + months
    return dt.date(idx // 12, idx % 12 + 1, 1)


def _monday(day: dt.date) -> dt.date:
    return day - dt.timedelta(days=day.weekday())


def last_week(today: Optional[dt.date] = None) -> TimePeriod:
    monday = _monday(_today(today)) - dt.timedelta(days=7)
    sunday = monday + dt.timedelta(days=6)
    return TimePeriod(
        start=monday,
        end=sunday + dt.timedelta(days=1),
        label=f"Last Week ({monday:%b %d} - {sunday:%b %d, %Y})",
    )


def this_week(today: Optional[dt.date] = None) -> TimePeriod:
    monday = _monday(_today(today))
    next_monday = monday + dt.timedelta(days=7)
    sunday = next_monday - dt.timedelta(days=1)
    return TimePeriod(
        start=monday,
        end=next_monday,
        label=f"This Week ({monday:%b %d} - {sunday:%b %d, %Y})",
    )


def last_month(today: Optional[dt.date] = None) -> TimePeriod:
    first_this = _today(today).replace(day=1)
    first_last = _add_months(first_this, -1)
    return TimePeriod(start=first_last, end=first_this, label=f"Last Month ({first_last:%B %Y})")


def this_month(today: Optional[dt.date] = None) -> TimePeriod:
    first = _today(today).replace(day=1)
    return TimePeriod(start=first, end=_add_months(first, 1), label=f"This Month ({first:%B %Y})")


def last_quarter(today: Optional[dt.date] = None) -> TimePeriod:
    day = _today(today)
    quarter = (day.month - 1) // 3 - 1
    year = day.year
    if quarter < 0:
        quarter = 3
        year -= 1
    start = dt.date(year, quarter * 3 + 1, 1)
    return TimePeriod(start=start, end=_add_months(start, 3), label=f"Q{quarter + 1} {year}")


def this_quarter(today: Optional[dt.date] = None) -> TimePeriod:
    day = _today(today)
    quarter = (day.month - 1) // 3
    start = dt.date(day.year, quarter * 3 + 1, 1)
    return TimePeriod(start=start, end=_add_months(start, 3), label=f"Q{quarter + 1} {day.year}")


def last_year(today: Optional[dt.date] = None) -> TimePeriod:
    year = _today(today).year - 1
    return TimePeriod(start=dt.date(year, 1, 1), end=dt.date(year + 1, 1, 1), label=f"Year {year}")


def this_year(today: Optional[dt.date] = None) -> TimePeriod:
    year = _today(today).year
    return TimePeriod(start=dt.date(year, 1, 1), end=dt.date(year + 1, 1, 1), label=f"Year {year}")


def custom(start: dt.date, end: dt.date, label: Optional[str] = None) -> TimePeriod:
    if end <= start:
        raise ValueError(f"end ({end}) must be after start ({start})")
    return TimePeriod(start=start, end=end, label=label or f"{start:%Y-%m-%d} to {end:%Y-%m-%d}")


def last_n_days(days: int, today: Optional[dt.date] = None) -> TimePeriod:
    """Window of ``days`` calendar days ending with (and including) today."""
    if days < 1:
        raise ValueError("days must be >= 1")
    end = _today(today) + dt.timedelta(days=1)
    return TimePeriod(start=end - dt.timedelta(days=days), end=end, label=f"Last {days} days")


PERIOD_FACTORIES: Dict[str, Callable[..., TimePeriod]] = {
    "last-week": last_week,
    "this-week": this_week,
    "last-month": last_month,
    "this-month": this_month,
    "last-quarter": last_quarter,
    "this-quarter": this_quarter,
    "last-year": last_year,
    "this-year": this_year,
}


def parse_period(
    name: str, days: Optional[int] = None, today: Optional[dt.date] = None
) -> Optional[TimePeriod]:
    """Resolve a CLI period name. ``all`` means no date restriction."""
    key = (name or "").strip().lower()
    if key == "all":
        return None
    if key == "last-n-days":
        if days is None:
            raise ValueError("last-n-days requires a number of days")
        return last_n_days(days, today=today)
    factory = PERIOD_FACTORIES.get(key)
    if factory is None:
        raise ValueError(f"Unknown period: {name}")
    return factory(today=today)
