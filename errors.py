class ExpenseTrackerError(Exception):
    pass


class InvalidRangeError(ExpenseTrackerError, ValueError):
    """Rejected input: an inverted date range or a non-positive amount."""


class NotFoundError(ExpenseTrackerError, LookupError):
    def __init__(self, expense_id: int) -> None:
        super().__init__(f"Expense {expense_id} not found")
        self.expense_id = expense_id


class StorageError(ExpenseTrackerError, RuntimeError):
    """The persistence layer failed; the original exception is chained."""
