# Overview: Service-layer operations for the income/expense ledger; sales postings and manual entries.

"""
Ledger invariants:

- A paid sale posts exactly one "Sales" income entry, keyed by
  (source_type, source_id). The posting is lookup-then-insert inside the
  sale's unit of work; the unique constraint backs it up.
- Manual entries carry no source and are scoped to the user who wrote them.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import IncomeExpense
from ..models.ledger import ENTRY_TYPE_INCOME, SALES_CATEGORY, VALID_ENTRY_TYPES
from ..validation import ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from app.time_utils import day_bounds, parse_iso_date, parse_iso_datetime, utcnow


ENTRY_POLICY = ModelValidationPolicy(
    fields={
        "type": "type",
        "category": "category",
        "description": "description",
        "amount": "amount_cents",
    },
    required_on_create=frozenset({"type", "amount"}),
    money_fields=frozenset({"amount"}),
    passthrough_fields=frozenset({"date", "id", "sourceType", "sourceId"}),
)


def post_sales_income(
    *,
    source_type: str,
    source_id: int,
    amount_cents: int,
    description: str,
    user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> IncomeExpense:
    """
    Post the "Sales" income entry of a paid sale, once.

    Runs inside the caller's unit of work (no commit). A second call for
    the same source returns the existing entry unchanged.
    """
    existing = (
        db.session.query(IncomeExpense)
        .filter_by(source_type=source_type, source_id=source_id)
        .first()
    )
    if existing:
        return existing

    entry = IncomeExpense(
        user_id=user_id,
        type=ENTRY_TYPE_INCOME,
        category=SALES_CATEGORY,
        description=description,
        amount_cents=amount_cents,
        date=occurred_at or utcnow(),
        source_type=source_type,
        source_id=source_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _parse_entry(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=IncomeExpense, payload=payload, policy=ENTRY_POLICY, partial=partial)

    if "type" in patch and patch["type"] not in VALID_ENTRY_TYPES:
        raise ValidationError("type must be 'income' or 'expense'")
    if patch.get("amount_cents") is not None and patch["amount_cents"] < 0:
        raise ValidationError("amount must be >= 0")

    if payload.get("date") not in (None, ""):
        try:
            patch["date"] = parse_iso_datetime(str(payload["date"]))
        except ValueError:
            raise ValidationError("date must be an ISO-8601 date or datetime")
    return patch


def list_entries(
    user_id: int,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    entry_type: str | None = None,
    category: str | None = None,
) -> list[dict]:
    query = db.session.query(IncomeExpense).filter(IncomeExpense.user_id == user_id)

    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise ValidationError("startDate/endDate must be ISO dates")
    if start:
        query = query.filter(IncomeExpense.date >= day_bounds(start)[0])
    if end:
        query = query.filter(IncomeExpense.date <= day_bounds(end)[1])
    if entry_type:
        query = query.filter(IncomeExpense.type == entry_type)
    if category:
        query = query.filter(IncomeExpense.category == category)

    entries = query.order_by(IncomeExpense.date.desc(), IncomeExpense.id.desc()).all()
    return [e.to_dict() for e in entries]


def create_entry(user_id: int, payload: dict) -> dict:
    patch = _parse_entry(payload, partial=False)
    entry = IncomeExpense(user_id=user_id, **patch)
    if entry.date is None:
        entry.date = utcnow()
    db.session.add(entry)
    db.session.commit()
    return entry.to_dict()


def _get_owned(entry_id: int, user_id: int) -> IncomeExpense:
    entry = db.session.query(IncomeExpense).filter_by(id=entry_id, user_id=user_id).first()
    if not entry:
        raise NotFoundError("Entry not found")
    return entry


def update_entry(entry_id: int, user_id: int, payload: dict) -> dict:
    patch = _parse_entry(payload, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    entry = _get_owned(entry_id, user_id)
    for k, v in patch.items():
        setattr(entry, k, v)
    db.session.commit()
    return entry.to_dict()


def delete_entry(entry_id: int, user_id: int) -> None:
    entry = _get_owned(entry_id, user_id)
    db.session.delete(entry)
    db.session.commit()


def bulk_delete_entries(user_id: int, ids) -> int:
    """Delete the caller's entries among `ids`; returns how many were removed."""
    if not isinstance(ids, list) or not ids:
        raise ValidationError("Invalid or empty IDs array")
    try:
        wanted = {int(i) for i in ids}
    except (TypeError, ValueError):
        raise ValidationError("Invalid or empty IDs array")

    deleted = (
        db.session.query(IncomeExpense)
        .filter(IncomeExpense.user_id == user_id, IncomeExpense.id.in_(wanted))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
