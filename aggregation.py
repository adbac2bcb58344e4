from ledger import LedgerStore
from periods import ReportQuery
from services import (
    AggregateSnapshot,
    AggregationService,
    CategoryTotal,
    DailyTotal,
    RangeTotals,
)


class ReportEngine:
    """Awaitable aggregation over a ledger store."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def daily_totals(self, query: ReportQuery) -> list[DailyTotal]:
        return await self.store.run(lambda session: AggregationService(session).daily_totals(query))

    async def category_totals(self, query: ReportQuery) -> list[CategoryTotal]:
        return await self.store.run(
            lambda session: AggregationService(session).category_totals(query)
        )

    async def range_totals(self, query: ReportQuery) -> RangeTotals:
        return await self.store.run(lambda session: AggregationService(session).range_totals(query))

    async def total_amount(self, query: ReportQuery) -> int:
        return (await self.range_totals(query)).amount_cents

    async def total_count(self, query: ReportQuery) -> int:
        return (await self.range_totals(query)).count

    async def snapshot(self, query: ReportQuery) -> AggregateSnapshot:
        return await self.store.run(lambda session: AggregationService(session).snapshot(query))
