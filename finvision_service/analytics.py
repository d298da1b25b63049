"""Dashboard figures computed from a user's transactions.

Transactions are plain mappings as returned by ``TransactionStore``. Dates are
ISO ``YYYY-MM-DD`` strings (a time suffix is tolerated); rows whose date does
not parse still count toward totals but are left out of month buckets.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from finvision_service.models import CategoryTotal, DashboardStats, MonthlyTotals

Transaction = Mapping[str, Any]

CSV_HEADERS = ["Date", "Vendor", "Category", "Type", "Amount", "Currency"]


def filter_transactions(transactions: Iterable[Transaction], term: str | None) -> list[Transaction]:
    """Case-insensitive substring match on vendor or category."""
    items = list(transactions)
    if not term:
        return items
    needle = term.lower()
    return [
        t
        for t in items
        if needle in str(t.get("vendor", "")).lower() or needle in str(t.get("category", "")).lower()
    ]


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _totals(items: Iterable[Transaction]) -> tuple[float, float]:
    revenue = expenses = 0.0
    for t in items:
        if t["type"] == "income":
            revenue += float(t["amount"])
        elif t["type"] == "expense":
            expenses += float(t["amount"])
    return revenue, expenses


def calc_change(current: float, previous: float) -> tuple[str, bool]:
    """Month-over-month change as display text and whether it went up."""
    if previous == 0:
        return ("+100%" if current > 0 else "0%"), current > 0
    change = (current - previous) / abs(previous) * 100
    return f"{'+' if change >= 0 else ''}{change:.1f}%", change > 0


def dashboard_stats(transactions: Iterable[Transaction]) -> DashboardStats:
    """Totals plus latest-month vs. previous-month changes."""
    items = list(transactions)
    if not items:
        return DashboardStats(
            total_revenue=0,
            total_expenses=0,
            net_profit=0,
            burn_rate=0,
            revenue_change="0%",
            expenses_change="0%",
            profit_change="0%",
            is_revenue_positive=True,
            is_expenses_positive=True,
            is_profit_positive=True,
        )

    dated = [(d, t) for t in items if (d := _parse_date(t.get("date"))) is not None]
    current: list[Transaction] = []
    previous: list[Transaction] = []
    if dated:
        latest = max(d for d, _ in dated)
        prev_year, prev_month = (
            (latest.year - 1, 12) if latest.month == 1 else (latest.year, latest.month - 1)
        )
        current = [t for d, t in dated if (d.year, d.month) == (latest.year, latest.month)]
        previous = [t for d, t in dated if (d.year, d.month) == (prev_year, prev_month)]

    curr_rev, curr_exp = _totals(current)
    prev_rev, prev_exp = _totals(previous)
    total_rev, total_exp = _totals(items)

    revenue_change, revenue_up = calc_change(curr_rev, prev_rev)
    expenses_change, expenses_up = calc_change(curr_exp, prev_exp)
    profit_change, profit_up = calc_change(curr_rev - curr_exp, prev_rev - prev_exp)

    return DashboardStats(
        total_revenue=total_rev,
        total_expenses=total_exp,
        net_profit=total_rev - total_exp,
        burn_rate=round(total_exp / 12),
        revenue_change=revenue_change,
        expenses_change=expenses_change,
        profit_change=profit_change,
        is_revenue_positive=revenue_up,
        # Rising expenses are the bad direction.
        is_expenses_positive=not expenses_up,
        is_profit_positive=profit_up,
    )


def monthly_trend(transactions: Iterable[Transaction]) -> list[MonthlyTotals]:
    """Income vs. expense per calendar month, oldest first."""
    buckets: dict[tuple[int, int], list[float]] = {}
    for t in transactions:
        d = _parse_date(t.get("date"))
        if d is None:
            continue
        bucket = buckets.setdefault((d.year, d.month), [0.0, 0.0])
        if t["type"] == "income":
            bucket[0] += float(t["amount"])
        else:
            bucket[1] += float(t["amount"])

    result = []
    for (year, month), (income, expense) in sorted(buckets.items()):
        label = date(year, month, 1).strftime("%b")
        result.append(
            MonthlyTotals(name=label, full_name=f"{label} {year}", income=income, expense=expense)
        )
    return result


def category_breakdown(transactions: Iterable[Transaction]) -> list[CategoryTotal]:
    """Expense totals per category, in first-seen order."""
    totals: dict[str, float] = {}
    for t in transactions:
        if t["type"] != "expense":
            continue
        totals[t["category"]] = totals.get(t["category"], 0.0) + float(t["amount"])
    return [CategoryTotal(name=name, value=value) for name, value in totals.items()]


def export_csv(transactions: Iterable[Transaction]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for t in transactions:
        writer.writerow(
            [t["date"], t["vendor"], t["category"], t["type"], t["amount"], t["currency"]]
        )
    return buf.getvalue()
