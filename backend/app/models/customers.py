from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Customer(db.Model):
    """Loyalty customer referenced by orders and transactions."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(32), nullable=True, unique=True)
    name = db.Column(db.String(128), nullable=False)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    member_card = db.Column(db.String(64), nullable=True, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone": self.phone,
            "name": self.name,
            "loyaltyPoints": self.loyalty_points,
            "memberCard": self.member_card,
            "createdAt": to_utc_z(self.created_at),
        }
