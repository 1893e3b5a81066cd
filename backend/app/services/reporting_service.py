# Overview: Service-layer operations for reporting; read-only sales summary rollups.

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import selectinload

from app.extensions import db
from app.models import IncomeExpense, Order, Product, Transaction
from app.models.ledger import ENTRY_TYPE_EXPENSE, ENTRY_TYPE_INCOME
from app.models.sales import PAYMENT_STATUS_PAID, PAYMENT_STATUS_UNPAID
from app.money import from_cents
from app.time_utils import day_bounds, month_bounds, parse_iso_date, to_utc_z, utcnow
from app.validation import ValidationError

PERIOD_DAILY = "daily"
PERIOD_MONTHLY = "monthly"


def resolve_period(
    period: str | None,
    start_date: str | None,
    end_date: str | None,
) -> tuple[datetime, datetime]:
    """
    Explicit startDate + endDate (whole days, inclusive) win; otherwise
    `daily` is today and anything else is the current month.
    """
    if start_date and end_date:
        try:
            start = parse_iso_date(start_date)
            end = parse_iso_date(end_date)
        except ValueError:
            raise ValidationError("startDate/endDate must be ISO dates")
        if end < start:
            raise ValidationError("endDate must not be before startDate")
        return day_bounds(start)[0], day_bounds(end)[1]

    today = utcnow().date()
    if period == PERIOD_DAILY:
        return day_bounds(today)
    return month_bounds(today)


def _add(bucket: dict, key, cents: int) -> None:
    bucket[key] = bucket.get(key, 0) + cents


def sales_summary(
    *,
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    category: str | None = None,
) -> dict:
    """
    Revenue, ledger and item rollups for one period.

    - totalRevenue sums transaction totals (paid and unpaid)
    - additionalIncome counts manual income entries only; the Sales entries
      posted for paid sales are already in totalRevenue
    - the category filter narrows itemsSold only
    """
    start, end = resolve_period(period, start_date, end_date)

    transactions = (
        db.session.query(Transaction)
        .options(selectinload(Transaction.items))
        .filter(Transaction.date >= start, Transaction.date <= end)
        .all()
    )
    entries = (
        db.session.query(IncomeExpense)
        .filter(IncomeExpense.date >= start, IncomeExpense.date <= end)
        .all()
    )
    orders = (
        db.session.query(Order)
        .filter(Order.created_at >= start, Order.created_at <= end)
        .all()
    )

    product_ids = {item.product_id for tx in transactions for item in tx.items if item.product_id is not None}
    categories = {}
    if product_ids:
        categories = dict(
            db.session.query(Product.id, Product.category).filter(Product.id.in_(product_ids)).all()
        )

    revenue_cents = sum(tx.total_cents for tx in transactions)
    expense_cents = 0
    additional_income_cents = 0
    income_by_category: dict[str, int] = {}
    expense_by_category: dict[str, int] = {}
    for entry in entries:
        label = entry.category or "Uncategorized"
        if entry.type == ENTRY_TYPE_EXPENSE:
            expense_cents += entry.amount_cents
            _add(expense_by_category, label, entry.amount_cents)
        elif entry.type == ENTRY_TYPE_INCOME:
            _add(income_by_category, label, entry.amount_cents)
            if entry.source_type is None:
                additional_income_cents += entry.amount_cents

    items: dict[tuple, dict] = {}
    by_category: dict[str, dict] = {}
    hourly: dict[int, dict] = {}
    for tx in transactions:
        hour = hourly.setdefault(tx.date.hour, {"transactionCount": 0, "revenue": 0, "itemsSold": 0})
        hour["transactionCount"] += 1
        hour["revenue"] += tx.total_cents

        for item in tx.items:
            hour["itemsSold"] += item.quantity
            item_category = categories.get(item.product_id)
            line_cents = item.quantity * item.price_cents

            cat = by_category.setdefault(
                item_category or "Unknown", {"quantity": 0, "revenue": 0, "products": set()}
            )
            cat["quantity"] += item.quantity
            cat["revenue"] += line_cents
            cat["products"].add(item.product_id)

            if category and item_category != category:
                continue
            row = items.setdefault((item.product_id, item.product_name), {
                "productName": item.product_name,
                "productId": str(item.product_id) if item.product_id is not None else None,
                "category": item_category,
                "quantity": 0,
                "revenue": 0,
                "prices": [],
                "transactions": set(),
            })
            row["quantity"] += item.quantity
            row["revenue"] += line_cents
            row["prices"].append(item.price_cents)
            row["transactions"].add(tx.id)

    items_sold = [
        {
            "productName": row["productName"],
            "productId": row["productId"],
            "category": row["category"],
            "quantity": row["quantity"],
            "revenue": from_cents(row["revenue"]),
            "avgPrice": round(sum(row["prices"]) / len(row["prices"]) / 100, 2),
            "orderCount": len(row["transactions"]),
        }
        for row in sorted(items.values(), key=lambda r: r["quantity"], reverse=True)
    ]
    transaction_count = len(transactions)
    total_income_cents = revenue_cents + additional_income_cents

    return {
        "period": period,
        "startDate": to_utc_z(start),
        "endDate": to_utc_z(end),
        "totalRevenue": from_cents(revenue_cents),
        "totalExpenses": from_cents(expense_cents),
        "additionalIncome": from_cents(additional_income_cents),
        "totalIncome": from_cents(total_income_cents),
        "netProfit": from_cents(total_income_cents - expense_cents),
        "transactionCount": transaction_count,
        "paidTransactionCount": sum(1 for tx in transactions if tx.status == PAYMENT_STATUS_PAID),
        "unpaidTransactionCount": sum(1 for tx in transactions if tx.status == PAYMENT_STATUS_UNPAID),
        "orderCount": len(orders),
        "orderTotal": from_cents(sum(o.total_cents for o in orders)),
        "totalItemsSold": sum(row["quantity"] for row in items_sold),
        "averageOrderValue": round(revenue_cents / transaction_count / 100, 2) if transaction_count else 0,
        "incomeByCategory": {k: from_cents(v) for k, v in income_by_category.items()},
        "expenseByCategory": {k: from_cents(v) for k, v in expense_by_category.items()},
        "itemsSold": items_sold,
        "categoryBreakdown": [
            {
                "category": name,
                "quantity": cat["quantity"],
                "revenue": from_cents(cat["revenue"]),
                "uniqueProducts": len(cat["products"] - {None}),
            }
            for name, cat in sorted(by_category.items(), key=lambda kv: kv[1]["revenue"], reverse=True)
        ],
        "hourlyData": [
            {
                "hour": hour,
                "transactionCount": data["transactionCount"],
                "revenue": from_cents(data["revenue"]),
                "itemsSold": data["itemsSold"],
            }
            for hour, data in sorted(hourly.items())
        ],
    }
