from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Sequence, Union

from config import Settings, get_settings
from models import ExpenseCategory
from services import CategoryTotal, DailyTotal

RECENT_WINDOW = 3


class ExpenseTrend(str, Enum):
    increasing = "INCREASING"
    decreasing = "DECREASING"
    stable = "STABLE"


@dataclass(frozen=True)
class AlertThresholds:
    daily_cents: int = 100_000
    category_cents: int = 500_000
    rapid_increase_priority_cents: int = 100_000
    trend_pct: int = 10
    max_alerts: int = 2

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AlertThresholds":
        settings = settings or get_settings()
        return cls(
            daily_cents=settings.daily_alert_cents,
            category_cents=settings.category_alert_cents,
            rapid_increase_priority_cents=settings.rapid_increase_priority_cents,
            trend_pct=settings.trend_threshold_pct,
            max_alerts=settings.max_alerts,
        )


@dataclass(frozen=True)
class HighDailySpending:
    date: date
    amount_cents: int


@dataclass(frozen=True)
class HighCategorySpending:
    category: ExpenseCategory
    amount_cents: int


@dataclass(frozen=True)
class RapidSpendingIncrease:
    pass


Alert = Union[HighDailySpending, HighCategorySpending, RapidSpendingIncrease]


def expense_trend(
    daily_totals: Sequence[DailyTotal], *, threshold_pct: int = 10
) -> ExpenseTrend:
    """Compare the three most recent days against the three before them.

    ``daily_totals`` must be sorted newest first. Windows shorter than three
    days just sum what is there.
    """
    if len(daily_totals) < 2:
        return ExpenseTrend.stable

    recent = sum(d.amount_cents for d in daily_totals[:RECENT_WINDOW])
    previous = sum(
        d.amount_cents for d in daily_totals[RECENT_WINDOW : RECENT_WINDOW * 2]
    )
    if previous == 0:
        return ExpenseTrend.stable

    # (recent - previous) / previous * 100 compared against the threshold, in integers
    change = (recent - previous) * 100
    if change > threshold_pct * previous:
        return ExpenseTrend.increasing
    if change < -threshold_pct * previous:
        return ExpenseTrend.decreasing
    return ExpenseTrend.stable


def _priority(alert: Alert, thresholds: AlertThresholds) -> int:
    if isinstance(alert, (HighDailySpending, HighCategorySpending)):
        return alert.amount_cents
    return thresholds.rapid_increase_priority_cents


def expense_alerts(
    daily_totals: Sequence[DailyTotal],
    category_totals: Sequence[CategoryTotal],
    thresholds: Optional[AlertThresholds] = None,
) -> list[Alert]:
    thresholds = thresholds or AlertThresholds()
    alerts: list[Alert] = []

    for daily in daily_totals:
        if daily.amount_cents > thresholds.daily_cents:
            alerts.append(HighDailySpending(daily.date, daily.amount_cents))

    for total in category_totals:
        if total.amount_cents > thresholds.category_cents:
            alerts.append(HighCategorySpending(total.category, total.amount_cents))

    if expense_trend(daily_totals, threshold_pct=thresholds.trend_pct) == ExpenseTrend.increasing:
        alerts.append(RapidSpendingIncrease())

    alerts.sort(key=lambda alert: _priority(alert, thresholds), reverse=True)
    return alerts[: thresholds.max_alerts]
