from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class BudgetPeriod:
    month: int
    year: int
    # Naive UTC, the same form expense dates are stored in.
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def last_day_of_month(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def _local_to_utc(day: date, at: time, tz: ZoneInfo) -> datetime:
    local = datetime.combine(day, at, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_budget_period(
    month: Optional[Union[int, str]] = None,
    year: Optional[Union[int, str]] = None,
    *,
    today: Optional[date] = None,
    tz: Optional[str] = None,
) -> BudgetPeriod:
    """Normalize a (month, year) selector into an inclusive datetime range.

    Missing parts fall back to the current calendar month. Strings are parsed
    with ``int()``; range checks are the caller's job. The month is a calendar
    month in ``tz`` (the configured timezone by default) and the bounds are
    returned as naive UTC.
    """
    if month in (None, "") or year in (None, ""):
        today = today or local_today()
    target_month = int(month) if month not in (None, "") else today.month
    target_year = int(year) if year not in (None, "") else today.year

    zone = ZoneInfo(tz or get_settings().timezone)
    first = date(target_year, target_month, 1)
    last = last_day_of_month(target_year, target_month)
    return BudgetPeriod(
        month=target_month,
        year=target_year,
        start=_local_to_utc(first, time.min, zone),
        end=_local_to_utc(last, time(23, 59, 59), zone),
    )
