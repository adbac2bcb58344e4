from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from csv_utils import parse_amount
from models import MAX_AMOUNT_CENTS, ExpenseCategory
from periods import Clock, local_now

NOTES_MAX_LENGTH = 100


class ExpenseIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int
    category: ExpenseCategory
    notes: Optional[str] = None
    receipt_image_path: Optional[str] = None
    created_at: Optional[datetime] = None


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int
    category: ExpenseCategory
    notes: Optional[str] = None
    receipt_image_path: Optional[str] = None


class ExpenseForm(BaseModel):
    """Raw values typed into the entry screen."""

    model_config = ConfigDict(validate_default=True)

    title: str = ""
    amount: str = ""
    category: ExpenseCategory = ExpenseCategory.food_dining
    notes: str = Field(default="", max_length=NOTES_MAX_LENGTH)
    receipt_image_path: Optional[str] = None
    selected_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Please enter a title")
        return value.strip()

    @field_validator("amount")
    @classmethod
    def _amount_positive(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Please enter an amount")
        try:
            cents = parse_amount(value)
        except ValueError as exc:
            raise ValueError("Please enter a valid amount") from exc
        if cents <= 0 or cents > MAX_AMOUNT_CENTS:
            raise ValueError("Please enter a valid amount")
        return value.strip()

    @field_validator("category", mode="before")
    @classmethod
    def _resolve_category(cls, value: object) -> object:
        if isinstance(value, str) and not isinstance(value, ExpenseCategory):
            return ExpenseCategory.resolve(value)
        return value

    def to_expense_in(self, clock: Optional[Clock] = None) -> ExpenseIn:
        now = (clock or local_now)()
        created_at = now
        if self.selected_date is not None:
            created_at = datetime.combine(self.selected_date, now.time())
        return ExpenseIn(
            title=self.title,
            amount_cents=parse_amount(self.amount),
            category=self.category,
            notes=self.notes.strip() or None,
            receipt_image_path=self.receipt_image_path,
            created_at=created_at,
        )
