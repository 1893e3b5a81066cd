# Overview: Service-layer operations for stock reservation; cart item normalization and batched stock moves.

"""
Stock Service

Stock lives directly on the product row (`Product.stock`) and only moves for
products with `has_stock` set. Every sale path locks the products it touches
in ONE batched statement (ascending id), then applies signed quantity deltas.

Stock is allowed to go below zero: a sale is never refused for lack of stock,
the low-stock listing is how shortages are surfaced.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..money import from_cents, to_cents
from ..validation import ValidationError, require_list
from .concurrency import lock_rows_for_update
from .option_schema_service import option_price_delta_cents


def _product_id(raw, where: str) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{where}.productId must be an integer")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{where}.productId must be an integer")


def _quantity(raw, where: str) -> int:
    message = f"{where}.quantity must be a positive integer"
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(message)
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(message)
    if qty <= 0:
        raise ValidationError(message)
    return qty


def normalize_items(raw_items, *, allow_empty: bool = False) -> list[dict]:
    """
    Validate a cart and return items as {productId, productName, quantity, price, customizations}.

    An item without a price is priced server-side: product price plus the
    price deltas of the options selected in its customizations. Unknown
    product ids are kept (null-reference tolerant) and priced at 0 when no
    price was sent.
    """
    items = require_list(raw_items, "items")
    if not items and not allow_empty:
        raise ValidationError("items must not be empty")

    ids = set()
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        pid = _product_id(raw.get("productId"), f"items[{i}]")
        if pid is not None:
            ids.add(pid)

    products = {}
    if ids:
        products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}

    normalized = []
    for i, raw in enumerate(items):
        where = f"items[{i}]"
        pid = _product_id(raw.get("productId"), where)
        product = products.get(pid)
        qty = _quantity(raw.get("quantity", 1), where)
        customizations = raw.get("customizations")

        price_cents = to_cents(raw.get("price"), f"{where}.price")
        if price_cents is None:
            price_cents = 0
            if product is not None:
                price_cents = (product.price_cents or 0) + option_price_delta_cents(product.id, customizations)
        if price_cents < 0:
            raise ValidationError(f"{where}.price cannot be negative")

        name = raw.get("productName") or raw.get("name") or (product.name if product else None)
        normalized.append({
            "productId": pid,
            "productName": name,
            "quantity": qty,
            "price": from_cents(price_cents),
            "customizations": customizations,
        })
    return normalized


def items_total_cents(items: list[dict]) -> int:
    return sum(to_cents(item["price"]) * item["quantity"] for item in items)


def quantities_by_product(items: list[dict]) -> dict[int, int]:
    """Aggregate quantities per product id; items without a product id are skipped."""
    totals: dict[int, int] = {}
    for item in items:
        pid = item.get("productId")
        if pid is None:
            continue
        try:
            pid = int(pid)
        except (TypeError, ValueError):
            continue
        totals[pid] = totals.get(pid, 0) + int(item.get("quantity") or 0)
    return totals


def apply_stock_deltas(deltas: dict[int, int]) -> dict[int, Product]:
    """
    Lock every referenced product in one statement and add the signed deltas
    to stock-tracked ones. Returns the locked rows keyed by id.

    Missing products and products without stock tracking are left untouched.
    Must run inside the caller's unit of work.
    """
    wanted = {pid: d for pid, d in deltas.items() if d}
    locked = lock_rows_for_update(Product, wanted.keys())
    for pid, delta in wanted.items():
        product = locked.get(pid)
        if product is None or not product.has_stock:
            continue
        product.stock = (product.stock or 0) + delta
    return locked


def reserve_stock(items: list[dict]) -> dict[int, Product]:
    """Decrement stock for a cart."""
    return apply_stock_deltas({pid: -qty for pid, qty in quantities_by_product(items).items()})



def existing_product_ids(product_ids) -> set[int]:
    """The subset of `product_ids` that still exist; nothing is locked or moved."""
    ids = {int(pid) for pid in product_ids}
    if not ids:
        return set()
    return {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(ids)).all()}
