from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from errors import InvalidRangeError, NotFoundError
from models import MAX_AMOUNT_CENTS, Expense, ExpenseCategory
from periods import Clock, ReportQuery, local_now
from schemas import ExpenseIn, ExpenseUpdate

logger = logging.getLogger(__name__)

PERCENT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class DailyTotal:
    date: date
    amount_cents: int
    count: int


@dataclass(frozen=True)
class CategoryTotal:
    category: ExpenseCategory
    amount_cents: int
    count: int
    percentage: Decimal = Decimal("0")


@dataclass(frozen=True)
class RangeTotals:
    amount_cents: int
    count: int


@dataclass(frozen=True)
class AggregateSnapshot:
    query: ReportQuery
    daily_totals: list[DailyTotal] = field(default_factory=list)
    category_totals: list[CategoryTotal] = field(default_factory=list)
    total_amount_cents: int = 0
    total_count: int = 0

    @property
    def range_totals(self) -> RangeTotals:
        return RangeTotals(self.total_amount_cents, self.total_count)

    @property
    def is_consistent(self) -> bool:
        daily_sum = sum(d.amount_cents for d in self.daily_totals)
        category_sum = sum(c.amount_cents for c in self.category_totals)
        return daily_sum == category_sum == self.total_amount_cents

    @classmethod
    def empty(cls, query: ReportQuery) -> "AggregateSnapshot":
        return cls(query=query)


@dataclass(frozen=True)
class DaySummary:
    day: date
    expenses: list[Expense]
    total_amount_cents: int
    count: int

    def by_category(self) -> dict[ExpenseCategory, list[Expense]]:
        grouped: dict[ExpenseCategory, list[Expense]] = defaultdict(list)
        for expense in self.expenses:
            grouped[expense.category].append(expense)
        return dict(grouped)


def validate_amount(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise InvalidRangeError("Amount must be greater than zero")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise InvalidRangeError("Amount is too large")


class ExpenseService:
    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or local_now

    def _newest_first(self, stmt):
        return stmt.order_by(Expense.created_at.desc(), Expense.id.desc())

    def create(self, data: ExpenseIn) -> Expense:
        validate_amount(data.amount_cents)
        created_at = data.created_at or self.clock()
        expense = Expense(
            title=data.title,
            amount_cents=data.amount_cents,
            category=data.category,
            notes=data.notes,
            receipt_image_path=data.receipt_image_path,
            created_at=created_at,
            created_on=created_at.date(),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError(expense_id)
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        validate_amount(data.amount_cents)
        expense = self.get(expense_id)
        expense.title = data.title
        expense.amount_cents = data.amount_cents
        expense.category = data.category
        expense.notes = data.notes
        expense.receipt_image_path = data.receipt_image_path
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> Optional[Expense]:
        """Remove an expense; returns the removed row, or None if it was absent."""
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            return None
        self.session.refresh(expense)
        self.session.expunge(expense)
        self.session.execute(delete(Expense).where(Expense.id == expense_id))
        self.session.commit()
        return expense

    def list_all(self) -> list[Expense]:
        return list(self.session.scalars(self._newest_first(select(Expense))).all())

    def list_between(self, start: date, end: date) -> list[Expense]:
        query = ReportQuery(start, end)
        stmt = select(Expense).where(
            Expense.created_on.between(query.start_date, query.end_date)
        )
        return list(self.session.scalars(self._newest_first(stmt)).all())

    def list_on(self, day: date) -> list[Expense]:
        return self.list_between(day, day)

    def list_by_category(self, category: ExpenseCategory) -> list[Expense]:
        stmt = select(Expense).where(Expense.category == category)
        return list(self.session.scalars(self._newest_first(stmt)).all())

    def day_summary(self, day: date) -> DaySummary:
        expenses = self.list_on(day)
        return DaySummary(
            day=day,
            expenses=expenses,
            total_amount_cents=sum(e.amount_cents for e in expenses),
            count=len(expenses),
        )


class AggregationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _in_range(query: ReportQuery):
        return Expense.created_on.between(query.start_date, query.end_date)

    def daily_totals(self, query: ReportQuery) -> list[DailyTotal]:
        stmt = (
            select(
                Expense.created_on,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(self._in_range(query))
            .group_by(Expense.created_on)
            .order_by(Expense.created_on.desc())
        )
        return [
            DailyTotal(date=row.created_on, amount_cents=int(row.total), count=int(row.count))
            for row in self.session.execute(stmt)
        ]

    def category_totals(self, query: ReportQuery) -> list[CategoryTotal]:
        stmt = (
            select(
                Expense.category,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(self._in_range(query))
            .group_by(Expense.category)
        )
        rows = [(row.category, int(row.total), int(row.count)) for row in self.session.execute(stmt)]
        grand_total = sum(total for _, total, _ in rows)
        rows.sort(key=lambda row: (-row[1], row[0].value))
        return [
            CategoryTotal(
                category=category,
                amount_cents=total,
                count=count,
                percentage=_percentage(total, grand_total),
            )
            for category, total, count in rows
        ]

    def range_totals(self, query: ReportQuery) -> RangeTotals:
        stmt = select(
            func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            func.count(Expense.id).label("count"),
        ).where(self._in_range(query))
        row = self.session.execute(stmt).one()
        return RangeTotals(amount_cents=int(row.total), count=int(row.count))

    def total_amount(self, query: ReportQuery) -> int:
        return self.range_totals(query).amount_cents

    def total_count(self, query: ReportQuery) -> int:
        return self.range_totals(query).count

    def snapshot(self, query: ReportQuery) -> AggregateSnapshot:
        """All aggregates for ``query``, read without committing in between."""
        daily = self.daily_totals(query)
        categories = self.category_totals(query)
        totals = self.range_totals(query)
        snapshot = AggregateSnapshot(
            query=query,
            daily_totals=daily,
            category_totals=categories,
            total_amount_cents=totals.amount_cents,
            total_count=totals.count,
        )
        if not snapshot.is_consistent:
            logger.warning(
                f"snapshot_inconsistent: range={query.describe()} "
                f"total={totals.amount_cents}"
            )
        return snapshot


def _percentage(amount_cents: int, total_cents: int) -> Decimal:
    if total_cents <= 0:
        return Decimal("0")
    return (Decimal(amount_cents) * 100 / Decimal(total_cents)).quantize(
        PERCENT_QUANTUM, rounding=ROUND_HALF_UP
    )
