from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..validation import safe_json_loads
from app.time_utils import to_utc_z, utcnow

GROUP_TYPE_SINGLE = "single"
GROUP_TYPE_MULTI = "multi"

VALUE_TYPES = ("text", "number", "boolean", "date")

# Storage bounds shared with the reconciler's truncation rules
GROUP_KEY_MAX = 100
LABEL_MAX = 255
VALUE_MAX = 255


class Product(db.Model):
    """
    Product master data.

    STOCK: `stock` is only meaningful when `has_stock` is true. Sales and
    orders never touch the column of a product that does not track stock.

    OPTION SCHEMA: not stored on this row. It is composed on read from
    product_option_groups / product_option_values, which are written only by
    the option schema reconciler.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (API exposes decimal amounts)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    secondary_price_cents = db.Column(db.Integer, nullable=True)

    has_stock = db.Column(db.Boolean, nullable=False, default=True)
    stock = db.Column(db.Integer, nullable=True)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    # Opaque client key-value data (JSON text). `metadata` is reserved on models.
    meta = db.Column("metadata", db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    option_groups = db.relationship(
        "ProductOptionGroup",
        back_populates="product",
        order_by="ProductOptionGroup.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    @property
    def metadata_dict(self) -> dict:
        return safe_json_loads(self.meta, {})

    def to_dict(self, option_schema: list | None = None) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "price": from_cents(self.price_cents),
            "secondaryPrice": from_cents(self.secondary_price_cents),
            "hasStock": self.has_stock,
            "stock": self.stock,
            "lowStockThreshold": self.low_stock_threshold,
            "metadata": self.metadata_dict,
            "optionSchema": option_schema if option_schema is not None else [],
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class ProductOptionGroup(db.Model):
    """One selectable group (e.g. "Size") of a product's option schema."""
    __tablename__ = "product_option_groups"
    __table_args__ = (
        db.UniqueConstraint("product_id", "key", name="uq_option_groups_product_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key = db.Column(db.String(GROUP_KEY_MAX), nullable=False)
    label = db.Column(db.String(LABEL_MAX), nullable=False, default="")
    type = db.Column(db.String(16), nullable=False, default=GROUP_TYPE_SINGLE)
    required = db.Column(db.Boolean, nullable=False, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", back_populates="option_groups")
    options = db.relationship(
        "ProductOptionValue",
        back_populates="group",
        order_by="ProductOptionValue.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "label": self.label,
            "type": self.type,
            "required": bool(self.required),
            "options": [o.to_dict() for o in self.options],
        }


class ProductOptionValue(db.Model):
    """
    A selectable option inside a group.

    IDENTITY: `identity` is a digest of (label, canonical value). `value`
    holds the canonical string, so typed inputs (number, boolean, date)
    dedupe the same way text does.
    """
    __tablename__ = "product_option_values"
    __table_args__ = (
        db.UniqueConstraint("group_id", "identity", name="uq_option_values_group_identity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(
        db.Integer, db.ForeignKey("product_option_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label = db.Column(db.String(LABEL_MAX), nullable=False, default="")
    value_type = db.Column(db.String(16), nullable=False, default="text")
    value = db.Column(db.String(VALUE_MAX), nullable=False, default="")
    identity = db.Column(db.String(64), nullable=False)

    value_text = db.Column(db.String(VALUE_MAX), nullable=True)
    value_number = db.Column(db.Float, nullable=True)
    value_boolean = db.Column(db.Boolean, nullable=True)
    value_date = db.Column(db.Date, nullable=True)

    price_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)

    group = db.relationship("ProductOptionGroup", back_populates="options")

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "label": self.label,
            "value": self.value,
            "valueType": self.value_type,
            "priceDelta": from_cents(self.price_delta_cents),
        }
        if self.value_type == "number":
            data["numberValue"] = self.value_number
        elif self.value_type == "boolean":
            data["booleanValue"] = self.value_boolean
        elif self.value_type == "date":
            data["dateValue"] = self.value_date.isoformat() if self.value_date else None
        return data
