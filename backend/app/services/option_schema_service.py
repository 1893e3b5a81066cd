# Overview: Service-layer operations for product option schemas; reconciles nested schemas into normalized tables.

"""
Option Schema Reconciler

A product's option schema arrives as a full replacement list:

    [{key, label, type, required, options: [{label, value, valueType, priceDelta, ...}]}]

and is written to product_option_groups / product_option_values so that the
tables hold exactly that list afterwards.

INVARIANTS:
- Groups keep their row id across edits while their key is unchanged
  (unique product_id + key).
- Options keep their row id while label + canonical value are unchanged
  (unique group_id + identity).
- Anything not in the incoming list is deleted; [] removes every group.
- The parent product row is locked NOWAIT first; a concurrent editor makes
  the attempt fail fast with TransientError instead of queueing.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..models import Product, ProductOptionGroup, ProductOptionValue
from ..models.products import (
    GROUP_KEY_MAX,
    GROUP_TYPE_MULTI,
    GROUP_TYPE_SINGLE,
    LABEL_MAX,
    VALUE_MAX,
    VALUE_TYPES,
)
from ..money import lenient_cents
from ..validation import ConflictError, NotFoundError, ValidationError
from app.time_utils import parse_iso_date
from .concurrency import begin_unit_of_work, lock_row_nowait, run_with_retry

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


@dataclass
class NormalizedOption:
    label: str
    value_type: str
    value: str
    identity: str
    price_delta_cents: int
    value_text: str | None = None
    value_number: float | None = None
    value_boolean: bool | None = None
    value_date: object = None


@dataclass
class NormalizedGroup:
    key: str
    label: str
    type: str
    required: bool
    options: list[NormalizedOption] = field(default_factory=list)


@dataclass
class NormalizedSchema:
    groups: list[NormalizedGroup]
    warnings: list[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    product_id: int
    schema: list[dict]
    warnings: list[str]


def _bounded(value, limit: int, where: str, warnings: list[str]) -> str:
    s = "" if value is None else str(value)
    if len(s) > limit:
        warnings.append(f"{where} truncated to {limit} characters")
        return s[:limit]
    return s


def _canonical_number(raw, where: str) -> tuple[str, float]:
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{where} must be a number")
    try:
        number = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{where} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{where} must be a finite number")
    if number == 0:
        return "0", 0.0
    return format(number.normalize(), "f"), float(number)


def _canonical_boolean(raw, where: str) -> tuple[str, bool]:
    if isinstance(raw, bool):
        flag = raw
    elif isinstance(raw, (int, float)) and raw in (0, 1):
        flag = bool(raw)
    elif isinstance(raw, str) and raw.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
        flag = raw.strip().lower() in _TRUE_STRINGS
    else:
        raise ValidationError(f"{where} must be a boolean")
    return ("true" if flag else "false"), flag


def canonicalize_option_value(option: dict, where: str = "option") -> tuple[str, str, dict]:
    """
    Return (value_type, canonical string, typed column values) for one option.

    text    -> passes through
    number  -> normalized decimal string ("1.50" and 1.5 both become "1.5")
    boolean -> "true" / "false"
    date    -> ISO date "YYYY-MM-DD"
    """
    value_type = option.get("valueType") or "text"
    if value_type not in VALUE_TYPES:
        value_type = "text"

    if value_type == "number":
        raw = option.get("numberValue", option.get("value"))
        canonical, number = _canonical_number(raw, f"{where}.numberValue")
        return value_type, canonical, {"value_number": number}

    if value_type == "boolean":
        raw = option.get("booleanValue", option.get("value"))
        canonical, flag = _canonical_boolean(raw, f"{where}.booleanValue")
        return value_type, canonical, {"value_boolean": flag}

    if value_type == "date":
        raw = option.get("dateValue", option.get("value"))
        try:
            day = parse_iso_date(raw)
        except (TypeError, ValueError):
            day = None
        if day is None:
            raise ValidationError(f"{where}.dateValue must be an ISO date")
        return value_type, day.isoformat(), {"value_date": day}

    raw = option.get("value", option.get("textValue"))
    text = "" if raw is None else str(raw)
    return value_type, text, {"value_text": text}


def option_identity(label: str, canonical_value: str) -> str:
    return hashlib.sha256(f"{label}\x1f{canonical_value}".encode("utf-8")).hexdigest()


def normalize_option_schema(schema) -> NormalizedSchema:
    """
    Validate and canonicalize a client schema without touching the database.

    Over-length keys, labels and values are truncated to their storage size
    and reported in `warnings`.
    Group keys must stay unique after truncation.
    """
    if not isinstance(schema, list):
        raise ValidationError("optionSchema must be an array")

    warnings: list[str] = []
    groups: list[NormalizedGroup] = []
    seen_keys: set[str] = set()

    for gi, raw_group in enumerate(schema):
        where = f"optionSchema[{gi}]"
        if not isinstance(raw_group, dict):
            raise ValidationError(f"{where} must be an object")

        raw_key = str(raw_group.get("key") or raw_group.get("label") or "").strip()
        if not raw_key:
            raise ValidationError(f"{where} requires a key or label")

        group = NormalizedGroup(
            key=_bounded(raw_key, GROUP_KEY_MAX, f"{where}.key", warnings),
            label=_bounded(raw_group.get("label") or "", LABEL_MAX, f"{where}.label", warnings),
            type=GROUP_TYPE_MULTI if raw_group.get("type") == GROUP_TYPE_MULTI else GROUP_TYPE_SINGLE,
            required=bool(raw_group.get("required")),
        )
        if group.key in seen_keys:
            raise ValidationError(f"{where}.key duplicates group '{group.key}'")
        seen_keys.add(group.key)

        raw_options = raw_group.get("options")
        if not isinstance(raw_options, list):
            raw_options = []

        for oi, raw_option in enumerate(raw_options):
            owhere = f"{where}.options[{oi}]"
            if not isinstance(raw_option, dict):
                raise ValidationError(f"{owhere} must be an object")

            value_type, canonical, typed = canonicalize_option_value(raw_option, owhere)
            label = _bounded(raw_option.get("label") or "", LABEL_MAX, f"{owhere}.label", warnings)
            canonical = _bounded(canonical, VALUE_MAX, f"{owhere}.value", warnings)
            if "value_text" in typed:
                typed["value_text"] = canonical

            group.options.append(NormalizedOption(
                label=label,
                value_type=value_type,
                value=canonical,
                identity=option_identity(label, canonical),
                price_delta_cents=lenient_cents(raw_option.get("priceDelta"), 0),
                **typed,
            ))

        groups.append(group)

    return NormalizedSchema(groups=groups, warnings=warnings)


def _apply_options(group: ProductOptionGroup, options: list[NormalizedOption]) -> None:
    existing = {
        v.identity: v
        for v in db.session.query(ProductOptionValue).filter(ProductOptionValue.group_id == group.id).all()
    }

    keep: set[str] = set()
    for position, opt in enumerate(options):
        row = existing.get(opt.identity)
        if row is None:
            row = ProductOptionValue(group_id=group.id, identity=opt.identity)
            db.session.add(row)
            existing[opt.identity] = row

        row.label = opt.label
        row.value_type = opt.value_type
        row.value = opt.value
        row.value_text = opt.value_text
        row.value_number = opt.value_number
        row.value_boolean = opt.value_boolean
        row.value_date = opt.value_date
        row.price_delta_cents = opt.price_delta_cents
        row.position = position
        keep.add(opt.identity)

    stale_ids = [v.id for ident, v in existing.items() if ident not in keep and v.id is not None]
    if stale_ids:
        db.session.query(ProductOptionValue).filter(
            ProductOptionValue.id.in_(stale_ids)
        ).delete(synchronize_session=False)


def apply_option_schema(product: Product, normalized: NormalizedSchema) -> None:
    """
    Upsert groups/options and prune the rest, inside the caller's unit of work.

    The caller must already hold the lock on `product` (see lock_row_nowait).
    """
    existing = {
        g.key: g
        for g in db.session.query(ProductOptionGroup)
        .filter(ProductOptionGroup.product_id == product.id)
        .with_for_update()
        .all()
    }

    keep_ids: set[int] = set()
    for position, ng in enumerate(normalized.groups):
        group = existing.get(ng.key)
        if group is None:
            group = ProductOptionGroup(product_id=product.id, key=ng.key)
            db.session.add(group)
            existing[ng.key] = group

        group.label = ng.label
        group.type = ng.type
        group.required = ng.required
        group.position = position
        db.session.flush()  # group.id is needed for its options

        keep_ids.add(group.id)
        _apply_options(group, ng.options)

    stale_ids = [g.id for g in existing.values() if g.id not in keep_ids]
    if stale_ids:
        # Options first: the FK cascade does the same, this keeps it independent of the backend
        db.session.query(ProductOptionValue).filter(
            ProductOptionValue.group_id.in_(stale_ids)
        ).delete(synchronize_session=False)
        db.session.query(ProductOptionGroup).filter(
            ProductOptionGroup.id.in_(stale_ids)
        ).delete(synchronize_session=False)

    db.session.flush()


def reconcile_option_schema(product_id: int, schema) -> ReconcileResult:
    """
    Replace a product's option schema as one unit of work.

    Raises:
        ValidationError: schema is not a list or an option value is malformed
        NotFoundError: product does not exist
        ConflictError: product stayed locked by another writer for every attempt
    """
    normalized = normalize_option_schema(schema)

    def _op():
        begin_unit_of_work()
        product = lock_row_nowait(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        apply_option_schema(product, normalized)
        db.session.commit()
        if normalized.warnings:
            current_app.logger.warning(
                "Product %s option schema truncated: %s", product_id, "; ".join(normalized.warnings)
            )
        return ReconcileResult(
            product_id=product_id,
            schema=load_option_schemas([product_id]).get(product_id, []),
            warnings=list(normalized.warnings),
        )

    return run_with_retry(_op, exhausted_error=ConflictError)


def load_option_schemas(product_ids) -> dict[int, list[dict]]:
    """Batch-load the stored schema of many products: {product_id: [group, ...]}."""
    ids = list({int(pid) for pid in product_ids})
    if not ids:
        return {}

    groups = (
        db.session.query(ProductOptionGroup)
        .filter(ProductOptionGroup.product_id.in_(ids))
        .order_by(ProductOptionGroup.product_id, ProductOptionGroup.position, ProductOptionGroup.id)
        .all()
    )
    values_by_group: dict[int, list[dict]] = {}
    group_ids = [g.id for g in groups]
    if group_ids:
        values = (
            db.session.query(ProductOptionValue)
            .filter(ProductOptionValue.group_id.in_(group_ids))
            .order_by(ProductOptionValue.group_id, ProductOptionValue.position, ProductOptionValue.id)
            .all()
        )
        for v in values:
            values_by_group.setdefault(v.group_id, []).append(v.to_dict())

    schemas: dict[int, list[dict]] = {}
    for g in groups:
        schemas.setdefault(g.product_id, []).append({
            "id": g.id,
            "key": g.key,
            "label": g.label,
            "type": g.type,
            "required": bool(g.required),
            "options": values_by_group.get(g.id, []),
        })
    return schemas


def _is_selected(option: dict, selected: list) -> bool:
    """Match selections against an option by label or by its canonical value."""
    for raw in selected:
        if raw is None:
            continue
        if isinstance(raw, str) and raw == option["label"]:
            return True
        try:
            _, canonical, _ = canonicalize_option_value({"valueType": option["valueType"], "value": raw})
        except ValidationError:
            continue
        if canonical == option["value"]:
            return True
    return False


def option_price_delta_cents(product_id: int, customizations) -> int:
    """
    Sum the price deltas of the options selected in `customizations`.

    `customizations` maps a group key to the selected value (single) or a
    list of values (multi). A selection matches an option by label or by
    its value canonicalized under the option's valueType, so 2, 2.0 and
    "2.0" all select a number option stored as "2". Unknown groups and
    values contribute nothing.
    """
    if not isinstance(customizations, dict) or not customizations:
        return 0

    schema = load_option_schemas([product_id]).get(product_id, [])
    total = 0
    for group in schema:
        selected = customizations.get(group["key"])
        if selected is None:
            continue
        if not isinstance(selected, list):
            selected = [selected]
        for opt in group["options"]:
            if _is_selected(opt, selected):
                total += lenient_cents(opt["priceDelta"], 0)
    return total
