# Overview: Service-layer operations for transactions; direct POS sales and sale record writes.

"""
Transaction Service

A Transaction is the durable record of a sale: header + denormalized items.
Two paths write one:

- create_transaction: direct POS sale. Reserves stock itself.
- order payment (order_service.mark_order_paid): synthesized from the
  order's stored items. Stock was already reserved when the order was made.

Transactions are never updated afterwards; they are only deleted together
with the order that produced them.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Customer, Transaction, TransactionItem
from ..models.ledger import SOURCE_TRANSACTION
from ..models.sales import (
    PAYMENT_METHOD_CASH,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
    VALID_PAYMENT_METHODS,
    VALID_PAYMENT_STATUSES,
)
from ..money import lenient_cents, to_cents
from ..validation import InsufficientPaymentError, ValidationError, dump_json
from app.time_utils import day_bounds, parse_iso_date
from .concurrency import begin_unit_of_work, run_with_retry
from .income_expense_service import post_sales_income
from .stock_service import items_total_cents, normalize_items, reserve_stock


INVALID_METHOD_MESSAGE = "Invalid payment method. Use cash or qr."
INSUFFICIENT_CASH_MESSAGE = "Insufficient cash received."


def validate_payment_method(method) -> str:
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(INVALID_METHOD_MESSAGE)
    return method


def settle_cash(total_cents: int, cash_received_cents: int | None) -> int:
    """Change due for a cash sale; cash below the total is refused."""
    if cash_received_cents is None or cash_received_cents < total_cents:
        raise InsufficientPaymentError(INSUFFICIENT_CASH_MESSAGE)
    return cash_received_cents - total_cents


def _optional_int(payload: dict, key: str, default=None) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def resolve_customer_id(customer_id: int | None) -> int | None:
    """Unknown customers are dropped rather than failing the sale."""
    if customer_id is None:
        return None
    return customer_id if db.session.get(Customer, customer_id) else None


def record_transaction(
    *,
    items: list[dict],
    known_product_ids,
    payment_method: str,
    status: str,
    subtotal_cents: int,
    discount_cents: int,
    total_cents: int,
    cash_received_cents: int | None = None,
    change_back_cents: int | None = None,
    order_id: int | None = None,
    user_id: int | None = None,
    customer_id: int | None = None,
    loyalty_points_used: int = 0,
    loyalty_points_earned: int = 0,
) -> Transaction:
    """
    Insert a transaction header and its items inside the caller's unit of work.

    Item product ids not in `known_product_ids` are stored as NULL.
    """
    tx = Transaction(
        order_id=order_id,
        user_id=user_id,
        customer_id=customer_id,
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        total_cents=total_cents,
        payment_method=payment_method,
        cash_received_cents=cash_received_cents,
        change_back_cents=change_back_cents,
        status=status,
        loyalty_points_used=loyalty_points_used,
        loyalty_points_earned=loyalty_points_earned,
    )
    db.session.add(tx)
    db.session.flush()

    known = set(known_product_ids)
    for item in items:
        pid = item.get("productId")
        try:
            pid = int(pid) if pid is not None else None
        except (TypeError, ValueError):
            pid = None
        tx.items.append(TransactionItem(
            product_id=pid if pid in known else None,
            product_name=item.get("productName") or item.get("name"),
            quantity=int(item.get("quantity") or 1),
            price_cents=lenient_cents(item.get("price"), 0),
            customizations=dump_json(item.get("customizations")),
        ))
    db.session.flush()
    return tx


def create_transaction(user_id: int | None, payload: dict) -> dict:
    """
    Direct POS sale.

    cash: always paid, needs cashReceived >= total, changeBack is the
    difference. qr: unpaid unless `status` is explicitly "paid".

    Raises:
        ValidationError: bad method, items or amounts
        InsufficientPaymentError: cash below total
        ServerError: contention persisted through every retry
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    method = validate_payment_method(payload.get("paymentMethod"))
    items = normalize_items(payload.get("items"))

    subtotal_cents = to_cents(payload.get("subtotal"), "subtotal", default=items_total_cents(items))
    discount_cents = to_cents(payload.get("discount"), "discount", default=0)
    if subtotal_cents < 0 or discount_cents < 0:
        raise ValidationError("subtotal and discount must be >= 0")
    total_cents = to_cents(payload.get("total"), "total", default=subtotal_cents - discount_cents)
    if total_cents < 0:
        raise ValidationError("total must be >= 0")

    cash_received_cents = None
    change_back_cents = None
    if method == PAYMENT_METHOD_CASH:
        status = PAYMENT_STATUS_PAID
        cash_received_cents = to_cents(payload.get("cashReceived"), "cashReceived")
        change_back_cents = settle_cash(total_cents, cash_received_cents)
    else:
        status = PAYMENT_STATUS_PAID if payload.get("status") == PAYMENT_STATUS_PAID else PAYMENT_STATUS_UNPAID

    customer_id = _optional_int(payload, "customerId")
    points_used = _optional_int(payload, "loyaltyPointsUsed", 0)
    points_earned = _optional_int(payload, "loyaltyPointsEarned", 0)

    def _op():
        begin_unit_of_work()
        locked = reserve_stock(items)

        tx = record_transaction(
            items=items,
            known_product_ids=locked.keys(),
            payment_method=method,
            status=status,
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
            cash_received_cents=cash_received_cents,
            change_back_cents=change_back_cents,
            user_id=user_id,
            customer_id=resolve_customer_id(customer_id),
            loyalty_points_used=points_used,
            loyalty_points_earned=points_earned,
        )

        if tx.status == PAYMENT_STATUS_PAID:
            post_sales_income(
                source_type=SOURCE_TRANSACTION,
                source_id=tx.id,
                amount_cents=tx.total_cents,
                description=f"POS Sale #{tx.id}",
                user_id=user_id,
                occurred_at=tx.date,
            )

        db.session.commit()
        current_app.logger.info("Transaction %s recorded (%s, %s)", tx.id, tx.payment_method, tx.status)
        return tx.to_dict()

    return run_with_retry(_op)


def list_transactions(
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    status: str | None = None,
) -> list[dict]:
    query = db.session.query(Transaction).options(selectinload(Transaction.items))

    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise ValidationError("startDate/endDate must be ISO dates")
    if start:
        query = query.filter(Transaction.date >= day_bounds(start)[0])
    if end:
        query = query.filter(Transaction.date <= day_bounds(end)[1])
    if status:
        if status not in VALID_PAYMENT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(VALID_PAYMENT_STATUSES)}")
        query = query.filter(Transaction.status == status)

    return [tx.to_dict() for tx in query.order_by(Transaction.date.desc(), Transaction.id.desc()).all()]
