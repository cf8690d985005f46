from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(d: date) -> date:
    return add_months(month_start(d), 1) - date.resolution


def trailing_months(months: int, *, today: Optional[date] = None) -> list[date]:
    """First day of each of the last ``months`` calendar months, oldest first.

    The current month is always the last entry.
    """
    if months < 1:
        raise ValueError("At least one month is required")
    today = today or date.today()
    current = month_start(today)
    return [add_months(current, offset) for offset in range(-(months - 1), 1)]


def trailing_period(months: int, *, today: Optional[date] = None) -> Period:
    keys = trailing_months(months, today=today)
    return Period(f"last_{months}_months", keys[0], month_end(keys[-1]))
