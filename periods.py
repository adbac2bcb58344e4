from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import InvalidRangeError

Clock = Callable[[], datetime]

DISPLAY_DATE_FORMAT = "%d %b %Y"


def local_now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    return datetime.now(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)


@dataclass(frozen=True)
class ReportQuery:
    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise InvalidRangeError(
                f"Start date {self.start_date.isoformat()} is after "
                f"end date {self.end_date.isoformat()}"
            )

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def describe(self) -> str:
        return (
            f"{self.start_date.strftime(DISPLAY_DATE_FORMAT)} - "
            f"{self.end_date.strftime(DISPLAY_DATE_FORMAT)}"
        )

    @classmethod
    def single_day(cls, day: date) -> "ReportQuery":
        return cls(day, day)


def _minus_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) - count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, min(d.day, monthrange(year, month)[1]))


def resolve_range(preset: Optional[str], *, today: Optional[date] = None) -> ReportQuery:
    """Build a query for one of the report screen's presets.

    ``last_7_days`` is the default and includes today.
    """
    today = today or local_now().date()
    if not preset or preset == "last_7_days":
        return ReportQuery(today - timedelta(days=6), today)
    if preset == "last_30_days":
        return ReportQuery(today - timedelta(days=29), today)
    if preset == "last_3_months":
        return ReportQuery(_minus_months(today, 3), today)
    if preset == "current_month":
        return ReportQuery(today.replace(day=1), today)
    raise ValueError(f"Unknown report range '{preset}'")


def previous_day(current: date) -> date:
    return current - date.resolution


def next_day(current: date, *, today: Optional[date] = None) -> date:
    """Step forward one day, staying on ``current`` rather than entering the future."""
    today = today or local_now().date()
    candidate = current + date.resolution
    if candidate > today:
        return current
    return candidate
