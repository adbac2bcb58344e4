import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Expense

CENT = Decimal("0.01")

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
COMMAND_LIKE = re.compile(r"^(?:(?:cmd|powershell|bash|sh)\b|\.|https?://)", re.IGNORECASE)


def sanitize_csv_value(value: str) -> str:
    """Prefix a tab to anything a spreadsheet could run as a formula or command."""
    value = (value or "").strip()
    if not value:
        return ""
    if value.startswith(FORMULA_PREFIXES) or COMMAND_LIKE.match(value):
        return "\t" + value
    return value


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("₹", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    try:
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    return str((Decimal(cents) / 100).quantize(CENT))


def write_rows(header: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def export_expenses(expenses: Sequence[Expense]) -> str:
    rows = [
        [
            expense.created_at.isoformat(timespec="seconds"),
            sanitize_csv_value(expense.title),
            format_cents(expense.amount_cents),
            expense.category.value,
            sanitize_csv_value(expense.notes or ""),
            sanitize_csv_value(expense.receipt_image_path or ""),
        ]
        for expense in expenses
    ]
    return write_rows(
        ["CreatedAt", "Title", "Amount", "Category", "Notes", "ReceiptImage"], rows
    )
