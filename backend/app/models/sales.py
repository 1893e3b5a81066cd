from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..validation import safe_json_loads
from app.time_utils import to_utc_z, utcnow

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_QR = "qr"
VALID_PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_QR)

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PARTIAL = "partial"
VALID_PAYMENT_STATUSES = (PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL)

ORDER_STATUSES = ("pending", "preparing", "ready", "completed", "cancelled")


class Order(db.Model):
    """
    Pending cart / ticket.

    RESERVATION: stock for stock-tracked items is decremented when the order
    is created, not when it is paid. Deleting the order restores it.

    ITEMS: kept as a denormalized JSON array of
    {productId, productName, quantity, price, customizations}.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)

    items = db.Column(db.Text, nullable=False, default="[]")
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Kitchen / fulfilment status
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID, index=True)
    payment_method = db.Column(db.String(16), nullable=True)

    table_number = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def item_list(self) -> list:
        items = safe_json_loads(self.items, [])
        return items if isinstance(items, list) else []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "customerId": self.customer_id,
            "items": self.item_list,
            "total": from_cents(self.total_cents),
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "tableNumber": self.table_number,
            "notes": self.notes,
            "metadata": safe_json_loads(self.meta, {}),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class Transaction(db.Model):
    """
    Completed (or QR-pending) sale record.

    IMMUTABLE: header and items are never updated after insert. They are only
    deleted when the order that produced them is deleted.

    `order_id` links a transaction synthesized from an order payment. Direct
    POS sales and rows written before the link existed leave it NULL.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_date_status", "date", "status"),
        db.Index("ix_transactions_subtotal_date", "subtotal_cents", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)
    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_back_cents = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID, index=True)

    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "userId": self.user_id,
            "customerId": self.customer_id,
            "subtotal": from_cents(self.subtotal_cents),
            "discount": from_cents(self.discount_cents),
            "total": from_cents(self.total_cents),
            "paymentMethod": self.payment_method,
            "cashReceived": from_cents(self.cash_received_cents),
            "changeBack": from_cents(self.change_back_cents),
            "status": self.status,
            "loyaltyPointsUsed": self.loyalty_points_used,
            "loyaltyPointsEarned": self.loyalty_points_earned,
            "date": to_utc_z(self.date),
            "items": [item.to_dict() for item in self.items],
        }


class TransactionItem(db.Model):
    """Denormalized sale line; product name and price are copied at sale time."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    customizations = db.Column(db.Text, nullable=True)

    transaction = db.relationship("Transaction", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "price": from_cents(self.price_cents),
            "customizations": safe_json_loads(self.customizations, None),
        }
