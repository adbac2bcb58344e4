from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidRangeError, NotFoundError
from models import ExpenseCategory
from periods import ReportQuery
from schemas import ExpenseIn, ExpenseUpdate
from services import (
    AggregationService,
    CategoryTotal,
    DailyTotal,
    ExpenseService,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def add(session, title, cents, category, when) -> int:
    expense = ExpenseService(session).create(
        ExpenseIn(title=title, amount_cents=cents, category=category, created_at=when)
    )
    return expense.id


def seed_example(session) -> None:
    food = ExpenseCategory.food_dining
    travel = ExpenseCategory.travel
    add(session, "Breakfast", 5_000, food, datetime(2024, 1, 10, 8, 0))
    add(session, "Lunch", 6_000, food, datetime(2024, 1, 10, 13, 0))
    add(session, "Dinner", 4_000, food, datetime(2024, 1, 10, 20, 0))
    add(session, "Bus", 2_000, travel, datetime(2024, 1, 11, 9, 0))
    add(session, "Metro", 3_000, travel, datetime(2024, 1, 11, 23, 59, 59))


def test_create_assigns_ids_and_calendar_date() -> None:
    with make_session() as session:
        service = ExpenseService(session, clock=lambda: datetime(2024, 3, 1, 7, 15))
        first = service.create(
            ExpenseIn(title="Coffee", amount_cents=250, category=ExpenseCategory.coffee_tea)
        )
        second = service.create(
            ExpenseIn(
                title="  Tea  ",
                amount_cents=150,
                category=ExpenseCategory.coffee_tea,
                notes="with ginger",
                receipt_image_path="content://receipts/42.jpg",
            )
        )

        assert first.id != second.id
        assert first.created_at == datetime(2024, 3, 1, 7, 15)
        assert first.created_on == date(2024, 3, 1)
        assert second.title == "Tea"
        assert second.receipt_image_path == "content://receipts/42.jpg"


def test_create_rejects_non_positive_amount() -> None:
    with make_session() as session:
        with pytest.raises(InvalidRangeError):
            add(session, "Refund", 0, ExpenseCategory.other, datetime(2024, 1, 1, 12, 0))
        with pytest.raises(InvalidRangeError):
            add(session, "Refund", -100, ExpenseCategory.other, datetime(2024, 1, 1, 12, 0))
        with pytest.raises(InvalidRangeError):
            add(session, "Yacht", 2**63, ExpenseCategory.other, datetime(2024, 1, 1, 12, 0))
        assert ExpenseService(session).list_all() == []


def test_deleted_ids_are_not_reused() -> None:
    with make_session() as session:
        first = add(session, "A", 100, ExpenseCategory.other, datetime(2024, 1, 1, 9, 0))
        ExpenseService(session).delete(first)
        second = add(session, "B", 100, ExpenseCategory.other, datetime(2024, 1, 1, 9, 0))
        assert second > first


def test_update_keeps_creation_time() -> None:
    with make_session() as session:
        expense_id = add(
            session, "Taxi", 1_200, ExpenseCategory.transportation, datetime(2024, 1, 5, 22, 0)
        )
        updated = ExpenseService(session).update(
            expense_id,
            ExpenseUpdate(
                title="Late taxi",
                amount_cents=1_500,
                category=ExpenseCategory.taxi_rideshare,
                notes="surge pricing",
            ),
        )
        assert updated.title == "Late taxi"
        assert updated.amount_cents == 1_500
        assert updated.category == ExpenseCategory.taxi_rideshare
        assert updated.created_at == datetime(2024, 1, 5, 22, 0)
        assert updated.created_on == date(2024, 1, 5)


def test_update_missing_expense_raises_not_found() -> None:
    with make_session() as session:
        with pytest.raises(NotFoundError):
            ExpenseService(session).update(
                99,
                ExpenseUpdate(title="Ghost", amount_cents=100, category=ExpenseCategory.other),
            )


def test_delete_is_idempotent() -> None:
    with make_session() as session:
        service = ExpenseService(session)
        expense_id = add(session, "Gift", 2_500, ExpenseCategory.gifts, datetime(2024, 1, 3, 10, 0))

        removed = service.delete(expense_id)
        assert removed is not None
        assert removed.created_on == date(2024, 1, 3)
        assert service.delete(expense_id) is None
        assert service.delete(12345) is None
        assert service.list_all() == []
        with pytest.raises(NotFoundError):
            service.get(expense_id)


def test_day_queries_match_calendar_date_across_month_boundary() -> None:
    with make_session() as session:
        add(session, "Late", 100, ExpenseCategory.other, datetime(2024, 1, 31, 23, 59, 59))
        add(session, "Early", 200, ExpenseCategory.other, datetime(2024, 2, 1, 0, 0))
        add(session, "Tenth", 300, ExpenseCategory.other, datetime(2024, 1, 10, 12, 0))
        add(session, "First", 400, ExpenseCategory.other, datetime(2024, 1, 1, 12, 0))

        service = ExpenseService(session)
        assert [e.title for e in service.list_on(date(2024, 1, 31))] == ["Late"]
        assert [e.title for e in service.list_on(date(2024, 2, 1))] == ["Early"]
        assert [e.title for e in service.list_on(date(2024, 1, 1))] == ["First"]
        assert [e.title for e in service.list_between(date(2024, 1, 10), date(2024, 2, 1))] == [
            "Early",
            "Late",
            "Tenth",
        ]


def test_list_between_rejects_inverted_range() -> None:
    with make_session() as session:
        with pytest.raises(InvalidRangeError):
            ExpenseService(session).list_between(date(2024, 1, 2), date(2024, 1, 1))


def test_list_by_category_is_newest_first() -> None:
    with make_session() as session:
        seed_example(session)
        titles = [
            e.title for e in ExpenseService(session).list_by_category(ExpenseCategory.travel)
        ]
        assert titles == ["Metro", "Bus"]


def test_day_summary_groups_by_category() -> None:
    with make_session() as session:
        seed_example(session)
        add(session, "Hotel", 9_000, ExpenseCategory.accommodation, datetime(2024, 1, 11, 12, 0))

        summary = ExpenseService(session).day_summary(date(2024, 1, 11))
        assert summary.count == 3
        assert summary.total_amount_cents == 14_000
        grouped = summary.by_category()
        assert [e.title for e in grouped[ExpenseCategory.travel]] == ["Metro", "Bus"]
        assert [e.title for e in grouped[ExpenseCategory.accommodation]] == ["Hotel"]


def test_aggregates_for_example_ledger() -> None:
    with make_session() as session:
        seed_example(session)
        query = ReportQuery(date(2024, 1, 10), date(2024, 1, 11))
        aggregation = AggregationService(session)

        assert aggregation.daily_totals(query) == [
            DailyTotal(date(2024, 1, 11), 5_000, 2),
            DailyTotal(date(2024, 1, 10), 15_000, 3),
        ]
        assert aggregation.category_totals(query) == [
            CategoryTotal(ExpenseCategory.food_dining, 15_000, 3, Decimal("75.00")),
            CategoryTotal(ExpenseCategory.travel, 5_000, 2, Decimal("25.00")),
        ]
        assert aggregation.total_amount(query) == 20_000
        assert aggregation.total_count(query) == 5


def test_snapshot_totals_agree_exactly() -> None:
    with make_session() as session:
        seed_example(session)
        add(session, "Odd", 333, ExpenseCategory.other, datetime(2024, 1, 12, 9, 0))
        add(session, "Out of range", 999, ExpenseCategory.other, datetime(2024, 1, 20, 9, 0))

        snapshot = AggregationService(session).snapshot(
            ReportQuery(date(2024, 1, 9), date(2024, 1, 12))
        )

        assert snapshot.is_consistent
        assert snapshot.total_amount_cents == 20_333
        assert snapshot.total_count == 6
        dates = [d.date for d in snapshot.daily_totals]
        assert dates == sorted(set(dates), reverse=True)
        # sparse series: 2024-01-09 has nothing and is absent
        assert date(2024, 1, 9) not in dates


def test_category_ties_are_ordered_by_identifier() -> None:
    with make_session() as session:
        when = datetime(2024, 1, 10, 12, 0)
        add(session, "Shirt", 1_000, ExpenseCategory.clothing, when)
        add(session, "Book", 1_000, ExpenseCategory.books, when)
        add(session, "Rent", 5_000, ExpenseCategory.rent, when)

        totals = AggregationService(session).category_totals(ReportQuery.single_day(date(2024, 1, 10)))
        assert [t.category for t in totals] == [
            ExpenseCategory.rent,
            ExpenseCategory.books,
            ExpenseCategory.clothing,
        ]
        assert [t.percentage for t in totals] == [
            Decimal("71.43"),
            Decimal("14.29"),
            Decimal("14.29"),
        ]


def test_empty_range_yields_empty_aggregates() -> None:
    with make_session() as session:
        seed_example(session)
        query = ReportQuery(date(2023, 12, 1), date(2023, 12, 31))
        snapshot = AggregationService(session).snapshot(query)

        assert snapshot.daily_totals == []
        assert snapshot.category_totals == []
        assert snapshot.total_amount_cents == 0
        assert snapshot.total_count == 0
        assert snapshot.is_consistent


def test_inverted_query_is_rejected() -> None:
    with pytest.raises(InvalidRangeError):
        ReportQuery(date(2024, 1, 11), date(2024, 1, 10))
