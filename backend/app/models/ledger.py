from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from app.time_utils import to_utc_z, utcnow

ENTRY_TYPE_INCOME = "income"
ENTRY_TYPE_EXPENSE = "expense"
VALID_ENTRY_TYPES = (ENTRY_TYPE_INCOME, ENTRY_TYPE_EXPENSE)

SALES_CATEGORY = "Sales"

SOURCE_TRANSACTION = "transaction"
SOURCE_ORDER = "order"


class IncomeExpense(db.Model):
    """
    Income / expense ledger entry.

    Entries posted automatically for paid sales carry (source_type, source_id);
    the unique constraint makes a second posting for the same sale fail.
    Manual entries leave both NULL and are freely editable.
    """
    __tablename__ = "income_expenses"
    __table_args__ = (
        db.UniqueConstraint("source_type", "source_id", name="uq_income_expenses_source"),
        db.Index("ix_income_expenses_user_date", "user_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    source_type = db.Column(db.String(32), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "description": self.description,
            "amount": from_cents(self.amount_cents),
            "date": to_utc_z(self.date),
            "sourceType": self.source_type,
            "sourceId": self.source_id,
        }
