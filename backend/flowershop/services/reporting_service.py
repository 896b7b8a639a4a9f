# Overview: Service-layer operations for reporting; read-only aggregates over transactions.

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..models import InventoryItem, Transaction, TransactionItem
from ..money import format_cents
from flowershop.time_utils import to_utc_z, utc_date_key, utcnow

ANALYTICS_PERIODS = ("week", "month", "year")
TOP_ITEMS_LIMIT = 10


def _in_range(query, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.filter(Transaction.created_at >= start)
    if end is not None:
        query = query.filter(Transaction.created_at <= end)
    return query


def transaction_summary(session, *, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Totals per type for an inclusive date range. Recomputed on every call."""
    query = session.query(
        Transaction.type,
        func.coalesce(func.sum(Transaction.total_amount_cents), 0),
        func.count(Transaction.id),
    )
    rows = _in_range(query, start, end).group_by(Transaction.type).all()

    totals = {tx_type: (int(amount), int(count)) for tx_type, amount, count in rows}
    sales_cents, sales_count = totals.get("SALE", (0, 0))
    expenses_cents, expenses_count = totals.get("EXPENSE", (0, 0))

    return {
        "total_sales": format_cents(sales_cents),
        "total_expenses": format_cents(expenses_cents),
        "profit": format_cents(sales_cents - expenses_cents),
        "sales_count": sales_count,
        "expenses_count": expenses_count,
        "transaction_count": sales_count + expenses_count,
    }


def _shift_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def period_start(period: str, now: datetime) -> datetime:
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return _shift_months(now, -1)
    if period == "year":
        return _shift_months(now, -12)
    raise ValidationError(
        f"period must be one of {', '.join(ANALYTICS_PERIODS)}",
        details={"period": period},
    )


def sales_analytics(session, *, period: str = "month", now: datetime | None = None) -> dict:
    """
    Day-bucketed SALE totals and the best-selling items since the period start.

    Days are the UTC calendar date of created_at. Top items are keyed by
    "Name (Quality)" and ranked by revenue, then units.
    """
    now = now or utcnow()
    start = period_start(period, now)

    sales = (
        session.query(Transaction)
        .filter(Transaction.type == "SALE", Transaction.created_at >= start)
        .order_by(Transaction.created_at.asc())
        .all()
    )
    by_day: dict[str, int] = {}
    for tx in sales:
        key = utc_date_key(tx.created_at)
        by_day[key] = by_day.get(key, 0) + tx.total_amount_cents

    item_rows = (
        session.query(
            InventoryItem.name,
            InventoryItem.quality,
            func.sum(TransactionItem.quantity),
            func.sum(TransactionItem.subtotal_cents),
        )
        .join(TransactionItem, TransactionItem.inventory_item_id == InventoryItem.id)
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.type == "SALE", Transaction.created_at >= start)
        .group_by(InventoryItem.id, InventoryItem.name, InventoryItem.quality)
        .all()
    )
    ranked = sorted(
        (
            {"item": f"{name} ({quality})", "quantity": int(qty), "revenue_cents": int(revenue)}
            for name, quality, qty, revenue in item_rows
        ),
        key=lambda row: (-row["revenue_cents"], -row["quantity"], row["item"]),
    )[:TOP_ITEMS_LIMIT]

    return {
        "period": period,
        "start_date": to_utc_z(start),
        "end_date": to_utc_z(now),
        "sales_by_day": [
            {"date": day, "total": format_cents(by_day[day])} for day in sorted(by_day)
        ],
        "top_items": [
            {"item": row["item"], "quantity": row["quantity"], "revenue": format_cents(row["revenue_cents"])}
            for row in ranked
        ],
    }
