"""Live report subscriptions.

A subscription owns one recompute task. Ledger changes inside its range,
poll ticks and manual refreshes only set a wake-up flag, so overlapping
triggers collapse into a single recompute, and every emitted snapshot comes
from one locked read of the ledger. At most one snapshot waits in the
delivery queue; a newer one replaces it.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Callable, Generic, Optional, TypeVar
from uuid import uuid4

from aggregation import ReportEngine
from errors import StorageError
from ledger import LedgerChange
from periods import ReportQuery
from scheduler import RefreshScheduler
from services import AggregateSnapshot, CategoryTotal, DailyTotal, RangeTotals

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


def _identity(snapshot: AggregateSnapshot) -> AggregateSnapshot:
    return snapshot


class ReportSubscription(Generic[T]):
    def __init__(
        self,
        engine: ReportEngine,
        query: ReportQuery,
        *,
        selector: Optional[Callable[[AggregateSnapshot], T]] = None,
        scheduler: Optional[RefreshScheduler] = None,
        refresh_interval: Optional[float] = None,
        on_close: Optional[Callable[["ReportSubscription"], None]] = None,
    ) -> None:
        self.id = uuid4().hex
        self.query = query
        self._engine = engine
        self._selector = selector or _identity
        self._scheduler = scheduler
        self._refresh_interval = refresh_interval
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._wakeup = asyncio.Event()
        self._mutated = False
        self._latest: Optional[AggregateSnapshot] = None
        self._callbacks: list[Callable[[T], None]] = []
        self._error_callbacks: list[Callable[[Exception], None]] = []
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.emitted = 0

    @property
    def job_id(self) -> str:
        return f"report-refresh-{self.id}"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> Optional[AggregateSnapshot]:
        """Last snapshot that was read successfully."""
        return self._latest

    @property
    def polling(self) -> bool:
        return self._scheduler is not None and bool(self._refresh_interval)

    def add_callback(self, callback: Callable[[T], None]) -> None:
        self._callbacks.append(callback)

    def add_error_callback(self, callback: Callable[[Exception], None]) -> None:
        self._error_callbacks.append(callback)

    def start(self) -> "ReportSubscription[T]":
        if self._task is not None or self._closed:
            return self
        self._engine.store.add_listener(self._on_ledger_change)
        if self.polling:
            self._scheduler.add_refresh_job(self.job_id, self._poll, self._refresh_interval)
        self._task = asyncio.create_task(self._run(), name=f"report-subscription-{self.id}")
        logger.debug(
            f"subscription_started: id={self.id} range={self.query.describe()} "
            f"polling={self.polling}"
        )
        return self

    def refresh(self) -> None:
        """Recompute now and emit even if nothing changed."""
        if self._closed:
            return
        self._mutated = True
        self._wakeup.set()

    def _on_ledger_change(self, change: LedgerChange) -> None:
        if self._closed or not self.query.contains(change.day):
            return
        self._mutated = True
        self._wakeup.set()

    async def _poll(self) -> None:
        if not self._closed:
            self._wakeup.set()

    async def _run(self) -> None:
        force = True
        while not self._closed:
            try:
                snapshot = await self._engine.snapshot(self.query)
            except StorageError as exc:
                logger.exception(
                    f"report_snapshot_failed: id={self.id} range={self.query.describe()}"
                )
                for callback in list(self._error_callbacks):
                    callback(exc)
            else:
                if force or snapshot != self._latest:
                    self._publish(snapshot)
                force = False

            await self._wakeup.wait()
            self._wakeup.clear()
            force = force or self._mutated
            self._mutated = False

    def _publish(self, snapshot: AggregateSnapshot) -> None:
        self._latest = snapshot
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)
        self.emitted += 1
        if self._callbacks:
            value = self._selector(snapshot)
            for callback in list(self._callbacks):
                callback(value)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._engine.store.remove_listener(self._on_ledger_change)
        if self._scheduler is not None:
            self._scheduler.remove_job(self.job_id)
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        self._callbacks.clear()
        self._error_callbacks.clear()
        if self._on_close is not None:
            self._on_close(self)
        logger.debug(f"subscription_closed: id={self.id} emitted={self.emitted}")

    def __aiter__(self) -> "ReportSubscription[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return self._selector(item)

    async def next_value(self, timeout: Optional[float] = None) -> T:
        return await asyncio.wait_for(self.__anext__(), timeout)

    async def __aenter__(self) -> "ReportSubscription[T]":
        return self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class LiveReports:
    def __init__(
        self,
        engine: ReportEngine,
        *,
        scheduler: Optional[RefreshScheduler] = None,
        refresh_interval: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.refresh_interval = refresh_interval
        self._subscriptions: set[ReportSubscription] = set()

    @property
    def active(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        query: ReportQuery,
        *,
        selector: Optional[Callable[[AggregateSnapshot], T]] = None,
        poll: bool = True,
        refresh_interval: Optional[float] = None,
    ) -> ReportSubscription:
        """Start a live subscription.

        Polling uses ``refresh_interval`` or the instance default; ``poll=False``
        relies on ledger notifications alone.
        """
        interval = (refresh_interval or self.refresh_interval) if poll else None
        subscription = ReportSubscription(
            self.engine,
            query,
            selector=selector,
            scheduler=self.scheduler,
            refresh_interval=interval,
            on_close=self._subscriptions.discard,
        )
        self._subscriptions.add(subscription)
        return subscription.start()

    def subscribe_daily_totals(
        self, query: ReportQuery, **kwargs
    ) -> ReportSubscription[list[DailyTotal]]:
        return self.subscribe(query, selector=lambda s: s.daily_totals, **kwargs)

    def subscribe_category_totals(
        self, query: ReportQuery, **kwargs
    ) -> ReportSubscription[list[CategoryTotal]]:
        return self.subscribe(query, selector=lambda s: s.category_totals, **kwargs)

    def subscribe_range_totals(
        self, query: ReportQuery, **kwargs
    ) -> ReportSubscription[RangeTotals]:
        return self.subscribe(query, selector=lambda s: s.range_totals, **kwargs)

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.aclose()
