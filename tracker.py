import asyncio
import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Optional, Sequence

from aggregation import ReportEngine
from config import Settings, configure_logging, get_settings
from csv_utils import export_expenses
from exports import ReportState, export_csv, export_html, export_plain_text
from insights import Alert, AlertThresholds, ExpenseTrend, expense_alerts, expense_trend
from ledger import LedgerStore
from live import LiveReports, ReportSubscription
from models import Expense, ExpenseCategory
from periods import Clock, ReportQuery, resolve_range
from scheduler import RefreshScheduler
from schemas import ExpenseIn, ExpenseUpdate
from services import (
    AggregateSnapshot,
    CategoryTotal,
    DailyTotal,
    DaySummary,
    RangeTotals,
)

logger = logging.getLogger(__name__)


class ExpenseTracker:
    """Entry point used by the presentation layer."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        settings: Optional[Settings] = None,
        scheduler: Optional[RefreshScheduler] = None,
        owns_store: bool = False,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.engine = ReportEngine(store)
        self.scheduler = scheduler or RefreshScheduler(self.settings.timezone)
        self.live = LiveReports(
            self.engine,
            scheduler=self.scheduler,
            refresh_interval=self.settings.refresh_interval_secs,
        )
        self.thresholds = AlertThresholds.from_settings(self.settings)
        self._sessions: set["ReportSession"] = set()
        self._owns_store = owns_store

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, *, clock: Optional[Clock] = None
    ) -> "ExpenseTracker":
        settings = settings or get_settings()
        configure_logging(settings)
        store = LedgerStore.open(settings.database_url, clock=clock)
        store.create_schema()
        return cls(store, settings=settings, owns_store=True)

    @property
    def clock(self) -> Clock:
        return self.store.clock

    def today(self) -> date:
        return self.clock().date()

    # ledger

    async def insert_expense(self, data: ExpenseIn) -> int:
        return await self.store.insert(data)

    async def update_expense(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        return await self.store.update(expense_id, data)

    async def delete_expense(self, expense_id: int) -> None:
        await self.store.delete(expense_id)

    async def get_expense(self, expense_id: int) -> Expense:
        return await self.store.get(expense_id)

    async def all_expenses(self) -> list[Expense]:
        return await self.store.list_all()

    async def expenses_on(self, day: date) -> list[Expense]:
        return await self.store.query_by_date(day)

    async def expenses_between(self, start: date, end: date) -> list[Expense]:
        return await self.store.query_by_date_range(start, end)

    async def expenses_in_category(self, category: ExpenseCategory) -> list[Expense]:
        return await self.store.query_by_category(category)

    async def day_summary(self, day: Optional[date] = None) -> DaySummary:
        return await self.store.day_summary(day or self.today())

    # aggregation

    async def daily_totals(self, query: ReportQuery) -> list[DailyTotal]:
        return await self.engine.daily_totals(query)

    async def category_totals(self, query: ReportQuery) -> list[CategoryTotal]:
        return await self.engine.category_totals(query)

    async def total_amount(self, query: ReportQuery) -> int:
        return await self.engine.total_amount(query)

    async def total_count(self, query: ReportQuery) -> int:
        return await self.engine.total_count(query)

    async def snapshot(self, query: ReportQuery) -> AggregateSnapshot:
        return await self.engine.snapshot(query)

    # live

    def subscribe(self, query: ReportQuery, *, poll: bool = False) -> ReportSubscription:
        return self.live.subscribe(query, poll=poll)

    def subscribe_daily_totals(
        self, query: ReportQuery, *, poll: bool = False
    ) -> ReportSubscription[list[DailyTotal]]:
        return self.live.subscribe_daily_totals(query, poll=poll)

    def subscribe_category_totals(
        self, query: ReportQuery, *, poll: bool = False
    ) -> ReportSubscription[list[CategoryTotal]]:
        return self.live.subscribe_category_totals(query, poll=poll)

    def subscribe_range_totals(
        self, query: ReportQuery, *, poll: bool = False
    ) -> ReportSubscription[RangeTotals]:
        return self.live.subscribe_range_totals(query, poll=poll)

    # insights

    def trend(self, daily_totals: Sequence[DailyTotal]) -> ExpenseTrend:
        return expense_trend(daily_totals, threshold_pct=self.thresholds.trend_pct)

    def alerts(
        self,
        daily_totals: Sequence[DailyTotal],
        category_totals: Sequence[CategoryTotal],
    ) -> list[Alert]:
        return expense_alerts(daily_totals, category_totals, self.thresholds)

    # exports

    def export_plain_text(self, state: ReportState) -> bytes:
        return export_plain_text(
            state, generated_on=self.today(), currency_symbol=self.settings.currency_symbol
        )

    def export_csv(self, state: ReportState) -> bytes:
        return export_csv(state)

    def export_html(self, state: ReportState) -> bytes:
        return export_html(
            state, generated_on=self.today(), currency_symbol=self.settings.currency_symbol
        )

    def export_expenses_csv(self, expenses: Sequence[Expense]) -> bytes:
        return export_expenses(expenses).encode("utf-8")

    # report sessions

    async def open_report(
        self, query: Optional[ReportQuery] = None, *, preset: Optional[str] = None
    ) -> "ReportSession":
        if query is None:
            query = resolve_range(preset, today=self.today())
        session = ReportSession(self, query)
        self._sessions.add(session)
        await session.start()
        return session

    async def aclose(self) -> None:
        for session in list(self._sessions):
            await session.close()
        await self.live.aclose()
        await self.scheduler.stop()
        if self._owns_store:
            self.store.dispose()

    async def __aenter__(self) -> "ExpenseTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class ReportSession:
    """The report screen's live state for one date range at a time."""

    def __init__(self, tracker: ExpenseTracker, query: ReportQuery) -> None:
        self.tracker = tracker
        self.query = query
        self.state = ReportState.loading(query, tracker.clock)
        self.refresh_interval: Optional[float] = None
        self._subscription: Optional[ReportSubscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._changed = asyncio.Event()
        self._closed = False

    @property
    def subscription(self) -> Optional[ReportSubscription]:
        return self._subscription

    def _set_state(self, state: ReportState) -> None:
        self.state = state
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def _on_snapshot(self, snapshot: AggregateSnapshot) -> None:
        logger.debug(
            f"report_loaded: range={self.query.describe()} "
            f"days={len(snapshot.daily_totals)} categories={len(snapshot.category_totals)} "
            f"total_cents={snapshot.total_amount_cents} count={snapshot.total_count}"
        )
        self._set_state(
            ReportState(
                query=self.query,
                snapshot=snapshot,
                last_updated=self.tracker.clock(),
            )
        )

    def _on_error(self, exc: Exception) -> None:
        self._set_state(
            replace(
                self.state,
                is_loading=False,
                error=f"Failed to load report data for {self.query.describe()}: {exc}",
            )
        )

    async def _consume(self, subscription: ReportSubscription) -> None:
        async for snapshot in subscription:
            self._on_snapshot(snapshot)

    async def _teardown(self) -> None:
        if self._subscription is not None:
            await self._subscription.aclose()
            self._subscription = None
        if self._consumer is not None:
            await self._consumer
            self._consumer = None

    async def _resubscribe(self) -> None:
        await self._teardown()
        if self.state.query == self.query:
            self._set_state(replace(self.state, is_loading=True, error=None))
        else:
            self._set_state(ReportState.loading(self.query, self.tracker.clock))
        subscription = self.tracker.live.subscribe(
            self.query,
            poll=self.refresh_interval is not None,
            refresh_interval=self.refresh_interval,
        )
        subscription.add_error_callback(self._on_error)
        self._subscription = subscription
        self._consumer = asyncio.create_task(self._consume(subscription))
        logger.info(f"report_range_selected: range={self.query.describe()}")

    async def start(self) -> None:
        await self._resubscribe()

    async def set_date_range(self, start: date, end: date) -> None:
        self.query = ReportQuery(start, end)
        await self._resubscribe()

    async def _apply_preset(self, preset: str) -> None:
        self.query = resolve_range(preset, today=self.tracker.today())
        await self._resubscribe()

    async def last_7_days(self) -> None:
        await self._apply_preset("last_7_days")

    async def last_30_days(self) -> None:
        await self._apply_preset("last_30_days")

    async def last_3_months(self) -> None:
        await self._apply_preset("last_3_months")

    async def current_month(self) -> None:
        await self._apply_preset("current_month")

    def refresh(self) -> None:
        if self._subscription is not None:
            self._subscription.refresh()

    async def start_periodic_refresh(self, interval: Optional[float] = None) -> None:
        self.refresh_interval = interval or self.tracker.settings.refresh_interval_secs
        await self._resubscribe()

    async def stop_periodic_refresh(self) -> None:
        self.refresh_interval = None
        await self._resubscribe()

    async def wait_for(
        self,
        predicate: Callable[[ReportState], bool],
        timeout: Optional[float] = 5.0,
    ) -> ReportState:
        async def _wait() -> ReportState:
            while not predicate(self.state):
                await self._changed.wait()
            return self.state

        return await asyncio.wait_for(_wait(), timeout)

    async def wait_until_loaded(self, timeout: Optional[float] = 5.0) -> ReportState:
        return await self.wait_for(lambda state: not state.is_loading, timeout)

    def date_range_description(self) -> str:
        return self.query.describe()

    def trend(self) -> ExpenseTrend:
        return self.tracker.trend(self.state.snapshot.daily_totals)

    def alerts(self) -> list[Alert]:
        snapshot = self.state.snapshot
        return self.tracker.alerts(snapshot.daily_totals, snapshot.category_totals)

    def export_plain_text(self) -> bytes:
        return self.tracker.export_plain_text(self.state)

    def export_csv(self) -> bytes:
        return self.tracker.export_csv(self.state)

    def export_html(self) -> bytes:
        return self.tracker.export_html(self.state)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._teardown()
        self.tracker._sessions.discard(self)
        logger.info(f"report_session_closed: range={self.query.describe()}")
