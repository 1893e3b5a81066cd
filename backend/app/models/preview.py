from __future__ import annotations

from ..extensions import db
from ..validation import safe_json_loads
from app.time_utils import to_utc_z, utcnow


class PreviewSnapshot(db.Model):
    """Latest customer-display snapshot per user (one row per user)."""
    __tablename__ = "preview_snapshots"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    payload = db.Column(db.Text, nullable=False, default="{}")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "snapshot": safe_json_loads(self.payload, {}),
            "updatedAt": to_utc_z(self.updated_at),
        }
