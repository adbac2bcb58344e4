"""Durable expense ledger with change notification.

All blocking database work runs in a worker thread under one store-wide lock,
so single-record writes never interleave and every read sees one ledger state.
Listeners are called on the event loop thread after a mutation commits.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Base, create_db_engine, make_session_factory, session_scope
from errors import StorageError
from models import Expense, ExpenseCategory
from periods import Clock, local_now
from schemas import ExpenseIn, ExpenseUpdate
from services import DaySummary, ExpenseService, validate_amount

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeKind(str, Enum):
    inserted = "inserted"
    updated = "updated"
    deleted = "deleted"


@dataclass(frozen=True)
class LedgerChange:
    kind: ChangeKind
    expense_id: int
    day: date


LedgerListener = Callable[[LedgerChange], None]


class LedgerStore:
    def __init__(self, engine: Engine, *, clock: Optional[Clock] = None) -> None:
        self.engine = engine
        self.clock = clock or local_now
        self._session_factory = make_session_factory(engine)
        self._lock = threading.Lock()
        self._listeners: list[LedgerListener] = []

    @classmethod
    def open(cls, database_url: str, *, clock: Optional[Clock] = None) -> "LedgerStore":
        return cls(create_db_engine(database_url), clock=clock)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # listeners

    def add_listener(self, listener: LedgerListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: LedgerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, change: LedgerChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    f"ledger_listener_failed: kind={change.kind.value} "
                    f"id={change.expense_id}"
                )

    # execution

    def _run_locked(self, work: Callable[[Session], T]) -> T:
        with self._lock:
            try:
                with session_scope(self._session_factory) as session:
                    return work(session)
            except SQLAlchemyError as exc:
                raise StorageError(f"Ledger operation failed: {exc}") from exc

    async def run(self, work: Callable[[Session], T]) -> T:
        """Run ``work`` with a fresh session in a worker thread."""
        return await asyncio.to_thread(self._run_locked, work)

    def _service(self, session: Session) -> ExpenseService:
        return ExpenseService(session, clock=self.clock)

    # writes

    async def insert(self, data: ExpenseIn) -> int:
        validate_amount(data.amount_cents)
        expense = await self.run(lambda session: self._service(session).create(data))
        logger.info(
            f"expense_inserted: id={expense.id} day={expense.created_on.isoformat()} "
            f"amount_cents={expense.amount_cents} category={expense.category.value}"
        )
        self._notify(LedgerChange(ChangeKind.inserted, expense.id, expense.created_on))
        return expense.id

    async def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        validate_amount(data.amount_cents)
        expense = await self.run(
            lambda session: self._service(session).update(expense_id, data)
        )
        logger.info(f"expense_updated: id={expense.id} day={expense.created_on.isoformat()}")
        self._notify(LedgerChange(ChangeKind.updated, expense.id, expense.created_on))
        return expense

    async def delete(self, expense_id: int) -> None:
        removed = await self.run(lambda session: self._service(session).delete(expense_id))
        if removed is None:
            logger.debug(f"expense_delete_skipped: id={expense_id} reason=missing")
            return
        logger.info(f"expense_deleted: id={expense_id} day={removed.created_on.isoformat()}")
        self._notify(LedgerChange(ChangeKind.deleted, expense_id, removed.created_on))

    # reads

    async def get(self, expense_id: int) -> Expense:
        return await self.run(lambda session: self._service(session).get(expense_id))

    async def list_all(self) -> list[Expense]:
        return await self.run(lambda session: self._service(session).list_all())

    async def query_by_date_range(self, start: date, end: date) -> list[Expense]:
        return await self.run(
            lambda session: self._service(session).list_between(start, end)
        )

    async def query_by_date(self, day: date) -> list[Expense]:
        return await self.run(lambda session: self._service(session).list_on(day))

    async def query_by_category(self, category: ExpenseCategory) -> list[Expense]:
        return await self.run(
            lambda session: self._service(session).list_by_category(category)
        )

    async def day_summary(self, day: date) -> DaySummary:
        return await self.run(lambda session: self._service(session).day_summary(day))
