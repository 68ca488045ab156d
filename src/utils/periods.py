from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from enum import StrEnum


class PeriodKind(StrEnum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


def period_date_range(kind: PeriodKind, year: int, number: int | None = None) -> tuple[date, date]:
    """First and last calendar day of a reporting period.

    ``number`` is the month (1-12) or quarter (1-4) and is ignored for annual periods.
    """
    if kind == PeriodKind.MONTHLY:
        month = number or 1
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be in 1..12, got {month}")
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
    if kind == PeriodKind.QUARTERLY:
        quarter = number or 1
        if not 1 <= quarter <= 4:
            raise ValueError(f"Quarter must be in 1..4, got {quarter}")
        first_month = (quarter - 1) * 3 + 1
        last_month = first_month + 2
        return date(year, first_month, 1), date(year, last_month, calendar.monthrange(year, last_month)[1])
    return date(year, 1, 1), date(year, 12, 31)


def period_bounds(kind: PeriodKind, year: int, number: int | None = None) -> tuple[datetime, datetime]:
    """Window bounds covering the whole period: activity after the start instant, up to the last microsecond."""
    first_day, last_day = period_date_range(kind, year, number)
    start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(last_day, time.max, tzinfo=timezone.utc)
    return start, end


def period_label(kind: PeriodKind, year: int, number: int | None = None) -> str:
    if kind == PeriodKind.MONTHLY:
        return f"{calendar.month_name[number or 1]} {year}"
    if kind == PeriodKind.QUARTERLY:
        return f"Q{number or 1} {year}"
    return f"{year}"
