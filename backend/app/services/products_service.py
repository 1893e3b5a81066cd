# backend/app/services/products_service.py
"""
Products Service

Scalar product fields are written here; the option schema is delegated to
option_schema_service inside the same unit of work, after the product row
has been locked NOWAIT. Retries exhausted on that lock surface as
ConflictError (HTTP 409).
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, Product, ProductOptionGroup, ProductOptionValue, TransactionItem
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ReferentialConflictError,
    ValidationError,
    dump_json,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import begin_unit_of_work, lock_row_nowait, run_with_retry
from .option_schema_service import apply_option_schema, load_option_schemas, normalize_option_schema

PRODUCT_POLICY = ModelValidationPolicy(
    fields={
        "name": "name",
        "category": "category",
        "description": "description",
        "price": "price_cents",
        "secondaryPrice": "secondary_price_cents",
        "hasStock": "has_stock",
        "stock": "stock",
        "lowStockThreshold": "low_stock_threshold",
    },
    required_on_create=frozenset({"name", "price"}),
    money_fields=frozenset({"price", "secondaryPrice"}),
    # Handled separately, or echoed back by clients and ignored
    passthrough_fields=frozenset({"optionSchema", "metadata", "id", "createdAt", "updatedAt", "versionId"}),
)


def _parse_product_payload(payload: dict, *, partial: bool) -> tuple[dict, object, bool]:
    """Returns (column patch, normalized option schema or None, metadata supplied?)."""
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=partial)
    enforce_rules_product(patch)

    has_metadata = "metadata" in payload
    if has_metadata:
        metadata = payload.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        patch["meta"] = dump_json(metadata)

    normalized = None
    if payload.get("optionSchema") is not None:
        normalized = normalize_option_schema(payload["optionSchema"])

    return patch, normalized, has_metadata


def _product_response(product: Product, warnings: list[str] | None = None) -> dict:
    schema = load_option_schemas([product.id]).get(product.id, [])
    data = product.to_dict(option_schema=schema)
    if warnings:
        current_app.logger.warning(
            "Product %s option schema truncated: %s", product.id, "; ".join(warnings)
        )
        data["warnings"] = warnings
    return data


def list_products(category: str | None = None) -> list[dict]:
    """All products (optionally one category) with their option schema batch-loaded."""
    query = db.session.query(Product)
    if category:
        query = query.filter(Product.category == category)
    products = query.order_by(Product.name.asc(), Product.id.asc()).all()

    schemas = load_option_schemas([p.id for p in products])
    return [p.to_dict(option_schema=schemas.get(p.id, [])) for p in products]


def list_low_stock_products() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(
            Product.has_stock.is_(True),
            Product.stock.isnot(None),
            Product.stock <= Product.low_stock_threshold,
        )
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
    return [p.to_dict() for p in products]


def get_product(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return _product_response(product)


def create_product(payload: dict) -> dict:
    """
    Create a product and, when supplied, its option schema in one unit of work.

    Raises:
        ValidationError: invalid fields or schema
        ConflictError: lock contention persisted through every retry
    """
    patch, normalized, _ = _parse_product_payload(payload, partial=False)
    if patch.get("has_stock", True) and patch.get("stock") is None:
        patch["stock"] = 0

    def _op():
        begin_unit_of_work()
        product = Product()
        for k, v in patch.items():
            setattr(product, k, v)
        db.session.add(product)
        db.session.flush()

        if normalized is not None:
            apply_option_schema(product, normalized)

        db.session.commit()
        return _product_response(product, normalized.warnings if normalized else None)

    return run_with_retry(_op, exhausted_error=ConflictError)


def update_product(product_id: int, payload: dict) -> dict:
    """
    Patch scalar fields and fully replace the option schema when `optionSchema` is present.

    An absent/null optionSchema leaves the stored schema untouched; [] clears it.

    Raises:
        ValidationError, NotFoundError, ConflictError
    """
    patch, normalized, _ = _parse_product_payload(payload, partial=True)

    def _op():
        begin_unit_of_work()
        product = lock_row_nowait(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        for k, v in patch.items():
            setattr(product, k, v)

        if normalized is not None:
            apply_option_schema(product, normalized)

        db.session.commit()
        return _product_response(product, normalized.warnings if normalized else None)

    return run_with_retry(_op, exhausted_error=ConflictError)


def _order_contains_product(order: Order, product_id: int) -> bool:
    return any(
        isinstance(item, dict) and str(item.get("productId")) == str(product_id)
        for item in order.item_list
    )


def find_orders_with_product(product_id: int) -> dict:
    """Orders whose item list references the product (scan of the JSON items)."""
    orders = db.session.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all()
    matching = [o for o in orders if _order_contains_product(o, product_id)]
    return {
        "hasOrders": bool(matching),
        "orders": [
            {
                "id": o.id,
                "tableNumber": o.table_number,
                "status": o.status,
                "createdAt": o.to_dict()["createdAt"],
                "total": o.to_dict()["total"],
            }
            for o in matching
        ],
    }


def delete_product(product_id: int, force: bool = False) -> None:
    """
    Delete a product and its option schema.

    Without `force`, a product referenced by transaction items is refused
    (ReferentialConflictError). With `force`, orders containing it and the
    transaction items referencing it are deleted first. Stock of other
    products in those orders is left as is.
    """
    def _op():
        begin_unit_of_work()
        product = lock_row_nowait(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        if force:
            for order in db.session.query(Order).all():
                if _order_contains_product(order, product_id):
                    db.session.delete(order)
            db.session.query(TransactionItem).filter(
                TransactionItem.product_id == product_id
            ).delete(synchronize_session=False)
        else:
            referenced = (
                db.session.query(TransactionItem)
                .filter(TransactionItem.product_id == product_id)
                .count()
            )
            if referenced:
                raise ReferentialConflictError(
                    "Cannot delete product: it is referenced in transaction history. "
                    "Use force delete to remove all related data.",
                    details={"hasTransactionItems": True},
                )

        group_ids = [
            gid for (gid,) in db.session.query(ProductOptionGroup.id)
            .filter(ProductOptionGroup.product_id == product_id)
            .all()
        ]
        if group_ids:
            db.session.query(ProductOptionValue).filter(
                ProductOptionValue.group_id.in_(group_ids)
            ).delete(synchronize_session=False)
            db.session.query(ProductOptionGroup).filter(
                ProductOptionGroup.id.in_(group_ids)
            ).delete(synchronize_session=False)

        db.session.delete(product)
        db.session.commit()

    run_with_retry(_op, exhausted_error=ConflictError)
