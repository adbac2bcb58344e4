"""Shareable report documents built from a report state."""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import get_settings
from csv_utils import format_cents, write_rows
from periods import DISPLAY_DATE_FORMAT, Clock, ReportQuery, local_now
from services import AggregateSnapshot

CSV_DATE_FORMAT = "%d/%m/%Y"
CSV_HEADER = ["Date", "Amount", "Count", "Category", "CategoryAmount", "CategoryCount"]
RULE = "=" * 50

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass(frozen=True)
class ReportState:
    query: ReportQuery
    snapshot: AggregateSnapshot
    is_loading: bool = False
    error: Optional[str] = None
    last_updated: datetime = field(default_factory=local_now)

    @classmethod
    def loading(cls, query: ReportQuery, clock: Optional[Clock] = None) -> "ReportState":
        return cls(
            query=query,
            snapshot=AggregateSnapshot.empty(query),
            is_loading=True,
            last_updated=(clock or local_now)(),
        )


def _money(cents: int, symbol: Optional[str]) -> str:
    if symbol is None:
        symbol = get_settings().currency_symbol
    return f"{symbol}{format_cents(cents)}"


def _context(state: ReportState, generated_on: Optional[date], symbol: Optional[str]) -> dict:
    snapshot = state.snapshot
    return {
        "period": state.query.describe(),
        "generated_on": (generated_on or local_now().date()).strftime(DISPLAY_DATE_FORMAT),
        "total_amount": _money(snapshot.total_amount_cents, symbol),
        "total_count": snapshot.total_count,
        "daily": [
            {
                "date": daily.date.strftime(DISPLAY_DATE_FORMAT),
                "amount": _money(daily.amount_cents, symbol),
                "count": daily.count,
            }
            for daily in snapshot.daily_totals
        ],
        "categories": [
            {
                "name": total.category.display_name,
                "amount": _money(total.amount_cents, symbol),
                "count": total.count,
            }
            for total in snapshot.category_totals
        ],
    }


def export_plain_text(
    state: ReportState,
    *,
    generated_on: Optional[date] = None,
    currency_symbol: Optional[str] = None,
) -> bytes:
    ctx = _context(state, generated_on, currency_symbol)
    lines = [
        "EXPENSE REPORT",
        f"Period: {ctx['period']}",
        f"Generated on: {ctx['generated_on']}",
        RULE,
        "",
        "SUMMARY",
        f"Total Amount: {ctx['total_amount']}",
        f"Total Expenses: {ctx['total_count']}",
        "",
        "DAILY BREAKDOWN",
    ]
    lines.extend(f"{d['date']}: {d['amount']} ({d['count']} expenses)" for d in ctx["daily"])
    lines.append("")
    lines.append("CATEGORY BREAKDOWN")
    lines.extend(
        f"{c['name']}: {c['amount']} ({c['count']} expenses)" for c in ctx["categories"]
    )
    return ("\n".join(lines) + "\n").encode("utf-8")


def export_csv(state: ReportState) -> bytes:
    """One row per day.

    The category field lists the whole range's categories on every row, not
    that day's; downstream sheets rely on this layout.
    """
    snapshot = state.snapshot
    category_info = ";".join(
        f"{total.category.value}:{format_cents(total.amount_cents)}:{total.count}"
        for total in snapshot.category_totals
    )
    rows = [
        [
            daily.date.strftime(CSV_DATE_FORMAT),
            format_cents(daily.amount_cents),
            str(daily.count),
            category_info,
        ]
        for daily in snapshot.daily_totals
    ]
    return write_rows(CSV_HEADER, rows).encode("utf-8")


def export_html(
    state: ReportState,
    *,
    generated_on: Optional[date] = None,
    currency_symbol: Optional[str] = None,
) -> bytes:
    ctx = _context(state, generated_on, currency_symbol)
    return _templates.get_template("report.html").render(**ctx).encode("utf-8")
