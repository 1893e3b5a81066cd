# Overview: Service-layer operations for orders; stock reservation, payment and reconciling deletes.

"""
Order Service

LIFECYCLE:
- create_order      reserves stock (decrement) and inserts the order, unpaid
- update_order      edits fields; item changes re-reserve by per-product delta
- mark_order_paid   unpaid -> paid synthesizes one Transaction + one Sales entry
- delete_order(s)   restores stock, removes the paired Transaction and the
                    order's ledger entries

Paid is terminal for payment status: a paid order cannot go back to unpaid.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import IncomeExpense, Order, Transaction
from ..models.ledger import SOURCE_ORDER, SOURCE_TRANSACTION
from ..models.sales import (
    ORDER_STATUSES,
    PAYMENT_METHOD_CASH,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
    VALID_PAYMENT_METHODS,
    VALID_PAYMENT_STATUSES,
)
from ..money import lenient_cents, to_cents
from ..validation import NotFoundError, ValidationError, dump_json
from .concurrency import begin_unit_of_work, lock_for_update, lock_rows_for_update, run_with_retry
from .income_expense_service import post_sales_income
from .stock_service import (
    apply_stock_deltas,
    existing_product_ids,
    items_total_cents,
    normalize_items,
    quantities_by_product,
    reserve_stock,
)
from .transaction_service import (
    record_transaction,
    resolve_customer_id,
    settle_cash,
    validate_payment_method,
)

_EDITABLE_KEYS = {"items", "total", "tableNumber", "notes", "metadata", "status", "customerId"}
# Echoed back by clients that PUT the whole order; ignored
_IGNORED_KEYS = {"id", "userId", "createdAt", "updatedAt", "paymentStatus", "paymentMethod"}


def _optional_text(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _metadata_json(payload: dict) -> str | None:
    metadata = payload.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")
    return dump_json(metadata)


def _customer_id(payload: dict) -> int | None:
    raw = payload.get("customerId")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("customerId must be an integer")


def _order_status(value) -> str:
    if value not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    return value


def _get_locked_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def create_order(user_id: int | None, payload: dict) -> dict:
    """
    Reserve stock for every stock-tracked item and insert the order.

    Stock decrement and insert commit together. Products that do not
    exist are tolerated and move no stock.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = normalize_items(payload.get("items"))
    total_cents = to_cents(payload.get("total"), "total", default=items_total_cents(items))
    if total_cents < 0:
        raise ValidationError("total must be >= 0")

    status = _order_status(payload.get("status") or "pending")
    customer_id = _customer_id(payload)
    table_number = _optional_text(payload, "tableNumber")
    notes = _optional_text(payload, "notes")
    meta = _metadata_json(payload)

    def _op():
        begin_unit_of_work()
        reserve_stock(items)

        order = Order(
            user_id=user_id,
            customer_id=resolve_customer_id(customer_id),
            items=dump_json(items),
            total_cents=total_cents,
            status=status,
            payment_status=PAYMENT_STATUS_UNPAID,
            table_number=table_number,
            notes=notes,
            meta=meta,
        )
        db.session.add(order)
        db.session.commit()
        current_app.logger.info("Order %s created with %d item(s)", order.id, len(items))
        return order.to_dict()

    return run_with_retry(_op)


def list_orders(user_id: int) -> list[dict]:
    orders = (
        db.session.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return [o.to_dict() for o in orders]


def update_order(order_id: int, payload: dict) -> dict:
    """
    Edit an order. New `items` replace the old ones and stock moves by the
    per-product quantity difference; items and total of a paid order are frozen.
    Without an explicit `total`, new items also reprice the order.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in payload:
        if key not in _EDITABLE_KEYS and key not in _IGNORED_KEYS:
            raise ValidationError(f"Field not allowed: {key}")
    if not any(key in payload for key in _EDITABLE_KEYS):
        raise ValidationError("No fields to update")

    new_items = normalize_items(payload["items"]) if "items" in payload else None
    total_cents = to_cents(payload.get("total"), "total")
    if total_cents is None and new_items is not None:
        total_cents = items_total_cents(new_items)
    if total_cents is not None and total_cents < 0:
        raise ValidationError("total must be >= 0")

    status = _order_status(payload["status"]) if "status" in payload else None
    customer_id = _customer_id(payload)

    def _op():
        begin_unit_of_work()
        order = _get_locked_order(order_id)

        if new_items is not None:
            if order.payment_status == PAYMENT_STATUS_PAID:
                raise ValidationError("Items of a paid order cannot be changed")
            old = quantities_by_product(order.item_list)
            new = quantities_by_product(new_items)
            # Positive delta gives stock back, negative reserves more
            apply_stock_deltas({pid: old.get(pid, 0) - new.get(pid, 0) for pid in set(old) | set(new)})
            order.items = dump_json(new_items)

        if total_cents is not None:
            if order.payment_status == PAYMENT_STATUS_PAID and total_cents != order.total_cents:
                raise ValidationError("Total of a paid order cannot be changed")
            order.total_cents = total_cents
        if status is not None:
            order.status = status
        if "tableNumber" in payload:
            order.table_number = _optional_text(payload, "tableNumber")
        if "notes" in payload:
            order.notes = _optional_text(payload, "notes")
        if "metadata" in payload:
            order.meta = _metadata_json(payload)
        if "customerId" in payload:
            order.customer_id = resolve_customer_id(customer_id)

        db.session.commit()
        return order.to_dict()

    return run_with_retry(_op)


def update_order_status(order_id: int, status) -> dict:
    """Kitchen / fulfilment status only; payment state is untouched."""
    status = _order_status(status)

    def _op():
        begin_unit_of_work()
        order = _get_locked_order(order_id)
        order.status = status
        db.session.commit()
        return order.to_dict()

    return run_with_retry(_op)


def mark_order_paid(order_id: int, payload: dict, user_id: int | None = None) -> dict:
    """
    Update an order's payment fields.

    unpaid -> paid, in one unit of work:
    - synthesizes a Transaction mirroring the stored items
      (subtotal = order total, total = order total - discount)
    - for cash, requires cashReceived >= total and records the change
    - posts one "Sales" income entry keyed by the order

    A cash payment without cashReceived is taken as exact tender.
    Marking an already paid order paid again writes nothing new.

    Raises:
        ValidationError, InsufficientPaymentError, NotFoundError, ServerError
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payment_status = payload.get("paymentStatus")
    payment_method = payload.get("paymentMethod")
    if payment_status is None and payment_method is None:
        raise ValidationError("No fields to update")
    if payment_status is not None and payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"paymentStatus must be one of {', '.join(VALID_PAYMENT_STATUSES)}")
    if payment_method is not None:
        validate_payment_method(payment_method)

    discount_cents = to_cents(payload.get("discount"), "discount", default=0)
    if discount_cents < 0:
        raise ValidationError("discount must be >= 0")
    cash_received_cents = to_cents(payload.get("cashReceived"), "cashReceived")

    def _op():
        begin_unit_of_work()
        order = _get_locked_order(order_id)
        was_paid = order.payment_status == PAYMENT_STATUS_PAID

        if was_paid and payment_status not in (None, PAYMENT_STATUS_PAID):
            raise ValidationError("A paid order cannot be marked unpaid")

        if payment_method is not None:
            if was_paid and payment_method != order.payment_method:
                raise ValidationError("Payment method of a paid order cannot be changed")
            order.payment_method = payment_method
        if payment_status is not None:
            order.payment_status = payment_status

        tx = None
        if payment_status == PAYMENT_STATUS_PAID and not was_paid:
            method = order.payment_method
            if method not in VALID_PAYMENT_METHODS:
                raise ValidationError("Invalid payment method. Use cash or qr.")

            total_cents = order.total_cents - discount_cents
            if total_cents < 0:
                raise ValidationError("discount cannot exceed the order total")

            received = change = None
            if method == PAYMENT_METHOD_CASH:
                received = total_cents if cash_received_cents is None else cash_received_cents
                change = settle_cash(total_cents, received)

            items = order.item_list
            product_ids = quantities_by_product(items).keys()
            tx = record_transaction(
                items=items,
                known_product_ids=existing_product_ids(product_ids),
                payment_method=method,
                status=PAYMENT_STATUS_PAID,
                subtotal_cents=order.total_cents,
                discount_cents=discount_cents,
                total_cents=total_cents,
                cash_received_cents=received,
                change_back_cents=change,
                order_id=order.id,
                user_id=user_id if user_id is not None else order.user_id,
                customer_id=order.customer_id,
            )
            post_sales_income(
                source_type=SOURCE_ORDER,
                source_id=order.id,
                amount_cents=total_cents,
                description=f"Order #{order.id} Payment",
                user_id=tx.user_id,
                occurred_at=tx.date,
            )

        db.session.commit()
        if tx is not None:
            current_app.logger.info("Order %s paid by %s as transaction %s", order.id, tx.payment_method, tx.id)

        data = order.to_dict()
        data["transaction"] = tx.to_dict() if tx is not None else None
        return data

    return run_with_retry(_op)


def _order_signature(order: Order) -> list[tuple]:
    rows = []
    for item in order.item_list:
        if not isinstance(item, dict):
            continue
        pid = item.get("productId")
        rows.append((
            "" if pid is None else str(pid),
            item.get("productName") or item.get("name") or "",
            lenient_cents(item.get("price"), 0),
            int(item.get("quantity") or 1),
        ))
    return sorted(rows)


def _transaction_signature(tx: Transaction) -> list[tuple]:
    return sorted([
        (
            "" if item.product_id is None else str(item.product_id),
            item.product_name or "",
            item.price_cents,
            item.quantity,
        )
        for item in tx.items
    ])


def find_paired_transactions(order: Order) -> list[Transaction]:
    """
    The transaction(s) written when this order was paid.

    Linked rows (order_id) win. For a paid order without linked rows,
    rows written before the link existed are matched by an order-independent item signature among unlinked
    transactions with the same subtotal inside the match window after the
    order was created. The signature match can miss, or pick an unrelated
    sale with identical items, amount and timing.
    """
    linked = db.session.query(Transaction).filter(Transaction.order_id == order.id).all()
    if linked:
        return linked
    # An unpaid order never produced a transaction
    if order.payment_status != PAYMENT_STATUS_PAID:
        return []

    window = timedelta(hours=float(current_app.config.get("ORDER_TRANSACTION_MATCH_WINDOW_HOURS", 24)))
    candidates = (
        db.session.query(Transaction)
        .filter(
            Transaction.order_id.is_(None),
            Transaction.subtotal_cents == order.total_cents,
            Transaction.date >= order.created_at,
            Transaction.date <= order.created_at + window,
        )
        .order_by(Transaction.date.asc(), Transaction.id.asc())
        .all()
    )
    wanted = _order_signature(order)
    for tx in candidates:
        if _transaction_signature(tx) == wanted:
            return [tx]
    return []


def _delete_orders_locked(orders: list[Order]) -> None:
    restore: dict[int, int] = {}
    for order in orders:
        for pid, qty in quantities_by_product(order.item_list).items():
            restore[pid] = restore.get(pid, 0) + qty
    apply_stock_deltas(restore)

    for order in orders:
        paired = find_paired_transactions(order)
        conditions = [
            (IncomeExpense.source_type == SOURCE_ORDER) & (IncomeExpense.source_id == order.id),
            IncomeExpense.description.in_([f"Order #{order.id} Payment", f"Order #{order.id}"]),
        ]
        for tx in paired:
            conditions.append(
                (IncomeExpense.source_type == SOURCE_TRANSACTION) & (IncomeExpense.source_id == tx.id)
            )
            db.session.delete(tx)

        db.session.query(IncomeExpense).filter(or_(*conditions)).delete(synchronize_session=False)
        db.session.delete(order)


def delete_order(order_id: int) -> None:
    """Delete one order, giving its stock back and removing its sale records."""
    def _op():
        begin_unit_of_work()
        order = _get_locked_order(order_id)
        _delete_orders_locked([order])
        db.session.commit()

    run_with_retry(_op)


def bulk_delete_orders(ids) -> int:
    """Delete many orders in one unit of work; unknown ids are skipped. Returns the count deleted."""
    if not isinstance(ids, list) or not ids:
        raise ValidationError("Invalid or empty IDs array")
    try:
        wanted = sorted({int(i) for i in ids})
    except (TypeError, ValueError):
        raise ValidationError("Invalid or empty IDs array")

    def _op():
        begin_unit_of_work()
        locked = lock_rows_for_update(Order, wanted)
        orders = [locked[i] for i in wanted if i in locked]
        _delete_orders_locked(orders)
        db.session.commit()
        return len(orders)

    return run_with_retry(_op)
