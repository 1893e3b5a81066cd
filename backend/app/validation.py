from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem (InvalidArgument)."""


class InsufficientPaymentError(ValidationError):
    """400-level: cash tendered is below the amount due."""


class ReferentialConflictError(ValidationError):
    """400-level: row is still referenced by sale history; retry with force."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level: referenced order/product is absent."""


class ConflictError(ValueError):
    """409-level conflict (e.g., a product row stayed locked after retries)."""


class ServerError(RuntimeError):
    """500-level failure; the message of the underlying cause is kept."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - fields: payload key -> model attribute (security boundary; camelCase API keys)
    - required_on_create: payload keys required for POST
    - money_fields: payload keys carrying decimal amounts stored as integer cents
    - passthrough_fields: accepted keys handled by the caller (not model columns)
    """
    fields: dict[str, str]
    required_on_create: frozenset = field(default_factory=frozenset)
    money_fields: frozenset = field(default_factory=frozenset)
    passthrough_fields: frozenset = field(default_factory=frozenset)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.column_attrs}


def _coerce_value(key: str, col, value: Any):
    coltype = col.expression.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        # Whole floats from JSON clients (3.0) are accepted, fractions are not
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValidationError(f"{key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{key} must be an integer")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        # fallback: truthiness
        return bool(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model attribute; passthrough
    keys are left out and must be read by the caller.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    # Local import: money depends on this module for ValidationError
    from .money import to_cents

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k in policy.passthrough_fields:
            continue
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")
        if policy.fields[k] not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.passthrough_fields:
            continue
        attr = policy.fields[k]
        col = cols[attr].columns[0]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[attr] = None
            continue

        if k in policy.money_fields:
            patch[attr] = to_cents(raw, k)
            continue

        val = _coerce_value(k, cols[attr], raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[attr] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("price_cents", "secondary_price_cents"):
        price = patch.get(key)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{key.replace('_cents', '')} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")

    if patch.get("low_stock_threshold") is not None and patch["low_stock_threshold"] < 0:
        raise ValidationError("lowStockThreshold must be >= 0")


def require_list(value, name: str) -> list:
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be an array")
    return value


def dump_json(value) -> str | None:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), default=str)


def safe_json_loads(value, fallback):
    """Parse a JSON column; anything unparseable yields the fallback."""
    if value is None or value == "":
        return fallback
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return fallback
