import asyncio
from datetime import date, datetime

import pytest
from sqlalchemy import text

from aggregation import ReportEngine
from errors import StorageError
from ledger import ChangeKind, LedgerStore
from live import LiveReports
from models import ExpenseCategory
from periods import ReportQuery
from scheduler import RefreshScheduler
from schemas import ExpenseIn
from services import DailyTotal, ExpenseService, RangeTotals

QUERY = ReportQuery(date(2024, 1, 10), date(2024, 1, 11))


def make_store() -> LedgerStore:
    store = LedgerStore.open("sqlite:///:memory:", clock=lambda: datetime(2024, 1, 11, 12, 0))
    store.create_schema()
    return store


def expense(cents: int, when: datetime, category=ExpenseCategory.food_dining) -> ExpenseIn:
    return ExpenseIn(title="Item", amount_cents=cents, category=category, created_at=when)


async def eventually(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


class FlakyEngine(ReportEngine):
    def __init__(self, store: LedgerStore) -> None:
        super().__init__(store)
        self.fail = False

    async def snapshot(self, query):
        if self.fail:
            raise StorageError("disk I/O error")
        return await super().snapshot(query)


def test_subscription_sees_prior_and_later_inserts() -> None:
    async def scenario() -> None:
        store = make_store()
        live = LiveReports(ReportEngine(store))
        await store.insert(expense(1_500, datetime(2024, 1, 10, 13, 0)))

        subscription = live.subscribe(QUERY, poll=False)
        first = await subscription.next_value(timeout=2)
        assert first.total_amount_cents == 1_500
        assert first.total_count == 1

        await store.insert(expense(2_500, datetime(2024, 1, 11, 9, 0)))
        second = await subscription.next_value(timeout=2)
        assert second.total_amount_cents == 4_000
        assert [d.date for d in second.daily_totals] == [date(2024, 1, 11), date(2024, 1, 10)]
        assert second.is_consistent

        await live.aclose()
        store.dispose()

    asyncio.run(scenario())


def test_changes_outside_range_do_not_emit() -> None:
    async def scenario() -> None:
        store = make_store()
        live = LiveReports(ReportEngine(store))
        subscription = live.subscribe(QUERY, poll=False)
        await subscription.next_value(timeout=2)

        await store.insert(expense(9_900, datetime(2024, 2, 1, 9, 0)))
        await asyncio.sleep(0.1)
        assert subscription.emitted == 1

        expense_id = await store.insert(expense(100, datetime(2024, 1, 10, 9, 0)))
        await subscription.next_value(timeout=2)
        await store.delete(expense_id)
        after_delete = await subscription.next_value(timeout=2)
        assert after_delete.total_count == 0

        await live.aclose()
        store.dispose()

    asyncio.run(scenario())


def test_unsubscribe_stops_delivery() -> None:
    async def scenario() -> None:
        store = make_store()
        live = LiveReports(ReportEngine(store))
        received = []
        subscription = live.subscribe(QUERY, poll=False)
        subscription.add_callback(received.append)
        await subscription.next_value(timeout=2)
        assert store.listener_count == 1

        await subscription.aclose()
        assert subscription.closed
        assert store.listener_count == 0
        assert live.active == 0

        await store.insert(expense(700, datetime(2024, 1, 10, 9, 0)))
        await asyncio.sleep(0.05)
        assert len(received) == 1
        assert [value async for value in subscription] == []

        store.dispose()

    asyncio.run(scenario())


def test_concurrent_writes_coalesce_into_consistent_snapshots() -> None:
    async def scenario() -> None:
        store = make_store()
        live = LiveReports(ReportEngine(store))
        subscription = live.subscribe(QUERY, poll=False)
        await subscription.next_value(timeout=2)

        ids = await asyncio.gather(
            *(store.insert(expense(100 + i, datetime(2024, 1, 10, 8, i))) for i in range(20))
        )
        assert len(set(ids)) == 20

        await eventually(
            lambda: subscription.latest is not None and subscription.latest.total_count == 20
        )
        latest = subscription.latest
        assert latest.total_amount_cents == sum(100 + i for i in range(20))
        assert latest.is_consistent
        assert subscription.emitted <= 21

        await live.aclose()
        store.dispose()

    asyncio.run(scenario())


def test_polling_picks_up_unnotified_writes_and_skips_duplicates() -> None:
    async def scenario() -> None:
        store = make_store()
        scheduler = RefreshScheduler("UTC")
        live = LiveReports(ReportEngine(store), scheduler=scheduler, refresh_interval=0.1)

        subscription = live.subscribe(QUERY)
        assert subscription.polling
        assert subscription.job_id in scheduler.job_ids()
        await subscription.next_value(timeout=2)

        await asyncio.sleep(0.35)
        assert subscription.emitted == 1

        # written behind the store's back: only a poll can notice it
        await store.run(
            lambda session: ExpenseService(session).create(
                expense(4_200, datetime(2024, 1, 11, 10, 0))
            )
        )
        polled = await subscription.next_value(timeout=2)
        assert polled.total_amount_cents == 4_200

        await subscription.aclose()
        assert subscription.job_id not in scheduler.job_ids()
        await scheduler.stop()
        assert not scheduler.running
        store.dispose()

    asyncio.run(scenario())


def test_failed_read_keeps_subscription_and_last_snapshot() -> None:
    async def scenario() -> None:
        store = make_store()
        engine = FlakyEngine(store)
        live = LiveReports(engine)
        await store.insert(expense(1_500, datetime(2024, 1, 10, 13, 0)))

        subscription = live.subscribe(QUERY, poll=False)
        errors = []
        subscription.add_error_callback(errors.append)
        await subscription.next_value(timeout=2)

        engine.fail = True
        await store.insert(expense(2_500, datetime(2024, 1, 11, 9, 0)))
        await eventually(lambda: bool(errors))
        assert isinstance(errors[0], StorageError)
        assert not subscription.closed
        assert subscription.latest.total_amount_cents == 1_500

        engine.fail = False
        subscription.refresh()
        recovered = await subscription.next_value(timeout=2)
        assert recovered.total_amount_cents == 4_000

        await live.aclose()
        store.dispose()

    asyncio.run(scenario())


def test_projection_subscriptions() -> None:
    async def scenario() -> None:
        store = make_store()
        live = LiveReports(ReportEngine(store))
        await store.insert(expense(5_000, datetime(2024, 1, 11, 9, 0), ExpenseCategory.travel))
        await store.insert(expense(15_000, datetime(2024, 1, 10, 9, 0)))

        daily = live.subscribe_daily_totals(QUERY, poll=False)
        totals = live.subscribe_range_totals(QUERY, poll=False)
        categories = live.subscribe_category_totals(QUERY, poll=False)
        seen = []
        totals.add_callback(seen.append)

        assert await daily.next_value(timeout=2) == [
            DailyTotal(date(2024, 1, 11), 5_000, 1),
            DailyTotal(date(2024, 1, 10), 15_000, 1),
        ]
        assert await totals.next_value(timeout=2) == RangeTotals(20_000, 2)
        assert [c.category for c in await categories.next_value(timeout=2)] == [
            ExpenseCategory.food_dining,
            ExpenseCategory.travel,
        ]
        assert seen == [RangeTotals(20_000, 2)]
        assert store.listener_count == 3

        await live.aclose()
        assert store.listener_count == 0
        store.dispose()

    asyncio.run(scenario())


def test_listener_receives_change_details() -> None:
    async def scenario() -> None:
        store = make_store()
        changes = []
        store.add_listener(changes.append)
        store.add_listener(changes.append)

        expense_id = await store.insert(expense(300, datetime(2024, 1, 10, 9, 0)))
        await store.delete(expense_id)
        await store.delete(expense_id)

        assert [(c.kind, c.expense_id, c.day) for c in changes] == [
            (ChangeKind.inserted, expense_id, date(2024, 1, 10)),
            (ChangeKind.deleted, expense_id, date(2024, 1, 10)),
        ]
        store.remove_listener(changes.append)
        assert store.listener_count == 0
        store.dispose()

    asyncio.run(scenario())


def test_storage_failures_are_wrapped() -> None:
    async def scenario() -> None:
        store = make_store()
        with pytest.raises(StorageError):
            await store.run(lambda session: session.execute(text("SELECT * FROM missing")))
        store.dispose()

    asyncio.run(scenario())
