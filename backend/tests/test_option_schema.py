"""
Option schema reconciler tests.

Verifies:
- Re-applying an unchanged schema keeps every row id (no churn)
- [] removes all groups and options
- Options are identified by label + canonical value, per value type
- Over-length text is truncated and reported
"""

import pytest

from app.extensions import db
from app.models import ProductOptionGroup, ProductOptionValue
from app.services.option_schema_service import (
    canonicalize_option_value,
    normalize_option_schema,
    option_identity,
    option_price_delta_cents,
    reconcile_option_schema,
)
from app.validation import NotFoundError, ValidationError


SIZE_SCHEMA = [
    {
        "key": "size",
        "label": "Size",
        "type": "single",
        "required": True,
        "options": [
            {"label": "Small", "value": "S", "priceDelta": 0},
            {"label": "Large", "value": "L", "priceDelta": 1.5},
        ],
    }
]


def _row_ids():
    groups = sorted(g.id for g in db.session.query(ProductOptionGroup).all())
    values = sorted(v.id for v in db.session.query(ProductOptionValue).all())
    return groups, values


# =============================================================================
# FULL REPLACEMENT
# =============================================================================


class TestReplacement:

    def test_same_schema_twice_keeps_ids(self, make_product):
        product = make_product()

        first = reconcile_option_schema(product.id, SIZE_SCHEMA)
        ids_after_first = _row_ids()
        second = reconcile_option_schema(product.id, SIZE_SCHEMA)

        assert _row_ids() == ids_after_first
        assert len(ids_after_first[0]) == 1
        assert len(ids_after_first[1]) == 2
        assert first.schema == second.schema
        assert second.warnings == []

    def test_stored_schema_shape(self, make_product):
        product = make_product()

        result = reconcile_option_schema(product.id, SIZE_SCHEMA)

        assert len(result.schema) == 1
        group = result.schema[0]
        assert group["key"] == "size"
        assert group["label"] == "Size"
        assert group["type"] == "single"
        assert group["required"] is True
        assert [o["label"] for o in group["options"]] == ["Small", "Large"]
        assert [o["priceDelta"] for o in group["options"]] == [0.0, 1.5]

    def test_empty_schema_removes_everything(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, SIZE_SCHEMA)

        result = reconcile_option_schema(product.id, [])

        assert result.schema == []
        assert db.session.query(ProductOptionGroup).count() == 0
        assert db.session.query(ProductOptionValue).count() == 0

    def test_group_without_options_is_kept_empty(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, SIZE_SCHEMA)
        group_id = db.session.query(ProductOptionGroup).one().id

        result = reconcile_option_schema(product.id, [{"key": "size", "label": "Size", "options": []}])

        assert result.schema[0]["id"] == group_id
        assert result.schema[0]["options"] == []
        assert db.session.query(ProductOptionValue).count() == 0

    def test_changed_option_replaces_only_that_row(self, make_product):
        product = make_product()
        first = reconcile_option_schema(product.id, SIZE_SCHEMA)
        small_id = first.schema[0]["options"][0]["id"]
        large_id = first.schema[0]["options"][1]["id"]

        changed = [dict(SIZE_SCHEMA[0], options=[
            {"label": "Small", "value": "S", "priceDelta": 0},
            {"label": "Extra Large", "value": "XL", "priceDelta": 2},
        ])]
        result = reconcile_option_schema(product.id, changed)

        ids = [o["id"] for o in result.schema[0]["options"]]
        assert ids[0] == small_id
        assert large_id not in ids
        assert db.session.query(ProductOptionValue).count() == 2

    def test_price_delta_update_keeps_option_id(self, make_product):
        product = make_product()
        first = reconcile_option_schema(product.id, SIZE_SCHEMA)

        repriced = [dict(SIZE_SCHEMA[0], options=[
            {"label": "Small", "value": "S", "priceDelta": 0},
            {"label": "Large", "value": "L", "priceDelta": 2.25},
        ])]
        result = reconcile_option_schema(product.id, repriced)

        assert result.schema[0]["options"][1]["id"] == first.schema[0]["options"][1]["id"]
        assert result.schema[0]["options"][1]["priceDelta"] == 2.25

    def test_dropped_group_removes_its_options(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, SIZE_SCHEMA + [
            {"key": "milk", "label": "Milk", "type": "multi", "options": [{"label": "Oat", "value": "oat"}]},
        ])
        assert db.session.query(ProductOptionGroup).count() == 2

        reconcile_option_schema(product.id, SIZE_SCHEMA)

        assert [g.key for g in db.session.query(ProductOptionGroup).all()] == ["size"]
        assert db.session.query(ProductOptionValue).count() == 2

    def test_key_falls_back_to_label(self, make_product):
        product = make_product()

        result = reconcile_option_schema(product.id, [{"label": "Sugar Level", "options": []}])

        assert result.schema[0]["key"] == "Sugar Level"

    def test_schemas_are_per_product(self, make_product):
        a = make_product(name="A")
        b = make_product(name="B")
        reconcile_option_schema(a.id, SIZE_SCHEMA)
        reconcile_option_schema(b.id, SIZE_SCHEMA)

        reconcile_option_schema(a.id, [])

        assert db.session.query(ProductOptionGroup).filter_by(product_id=b.id).count() == 1


# =============================================================================
# VALIDATION AND NORMALIZATION
# =============================================================================


class TestNormalization:

    def test_non_list_schema_rejected(self, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            reconcile_option_schema(product.id, {"size": []})

    def test_group_needs_key_or_label(self):
        with pytest.raises(ValidationError):
            normalize_option_schema([{"options": []}])

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            reconcile_option_schema(999, SIZE_SCHEMA)

    def test_duplicate_group_keys_rejected(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, SIZE_SCHEMA)

        with pytest.raises(ValidationError):
            reconcile_option_schema(product.id, [
                {"key": "size", "options": [{"label": "Small", "value": "S"}]},
                {"key": "size", "options": [{"label": "Large", "value": "L"}]},
            ])

        # Keys that only collide once truncated count as duplicates too
        with pytest.raises(ValidationError):
            normalize_option_schema([{"key": "k" * 120}, {"key": "k" * 130}])

        assert db.session.query(ProductOptionValue).count() == 2

    def test_unknown_types_fall_back(self):
        schema = normalize_option_schema([
            {"key": "k", "type": "weird", "options": [{"label": "A", "value": "a", "valueType": "color"}]},
        ])
        group = schema.groups[0]
        assert group.type == "single"
        assert group.options[0].value_type == "text"

    def test_invalid_price_delta_defaults_to_zero(self):
        schema = normalize_option_schema([
            {"key": "k", "options": [
                {"label": "A", "value": "a", "priceDelta": "abc"},
                {"label": "B", "value": "b"},
            ]},
        ])
        assert [o.price_delta_cents for o in schema.groups[0].options] == [0, 0]

    def test_over_length_text_is_truncated_with_warning(self, make_product):
        product = make_product()
        long_label = "L" * 300
        long_key = "k" * 150

        result = reconcile_option_schema(product.id, [
            {"key": long_key, "label": "Size", "options": [{"label": long_label, "value": "v" * 400}]},
        ])

        assert len(result.warnings) == 3
        assert len(result.schema[0]["key"]) == 100
        option = result.schema[0]["options"][0]
        assert len(option["label"]) == 255
        assert len(option["value"]) == 255

    def test_number_values_share_identity(self):
        _, a, _ = canonicalize_option_value({"valueType": "number", "value": "1.50"})
        _, b, _ = canonicalize_option_value({"valueType": "number", "numberValue": 1.5})
        assert a == b == "1.5"
        assert option_identity("Shot", a) == option_identity("Shot", b)

    def test_boolean_and_date_canonical_forms(self):
        assert canonicalize_option_value({"valueType": "boolean", "booleanValue": True})[1] == "true"
        assert canonicalize_option_value({"valueType": "boolean", "value": "no"})[1] == "false"
        assert canonicalize_option_value({"valueType": "date", "dateValue": "2026-03-01T10:00:00Z"})[1] == "2026-03-01"

    def test_malformed_typed_value_rejected(self):
        with pytest.raises(ValidationError):
            canonicalize_option_value({"valueType": "number", "value": "lots"})
        with pytest.raises(ValidationError):
            canonicalize_option_value({"valueType": "date", "value": "someday"})

    def test_typed_columns_are_stored(self, make_product):
        product = make_product()

        reconcile_option_schema(product.id, [{"key": "extras", "options": [
            {"label": "Shots", "valueType": "number", "numberValue": 2},
            {"label": "Iced", "valueType": "boolean", "booleanValue": False},
        ]}])

        rows = {v.label: v for v in db.session.query(ProductOptionValue).all()}
        assert rows["Shots"].value == "2"
        assert rows["Shots"].value_number == 2.0
        assert rows["Iced"].value == "false"
        assert rows["Iced"].value_boolean is False


# =============================================================================
# PRICING FROM SELECTED OPTIONS
# =============================================================================


class TestPriceDelta:

    def test_selected_options_sum(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, SIZE_SCHEMA + [
            {"key": "milk", "type": "multi", "options": [
                {"label": "Oat", "value": "oat", "priceDelta": 0.5},
                {"label": "Soy", "value": "soy", "priceDelta": 0.25},
            ]},
        ])

        assert option_price_delta_cents(product.id, {"size": "L", "milk": ["oat", "Soy"]}) == 225
        assert option_price_delta_cents(product.id, {"size": "Small"}) == 0
        assert option_price_delta_cents(product.id, {"unknown": "x"}) == 0
        assert option_price_delta_cents(product.id, None) == 0

    def test_typed_selections_match_canonically(self, make_product):
        product = make_product()
        reconcile_option_schema(product.id, [
            {"key": "shots", "options": [{"label": "Double", "valueType": "number", "value": 2, "priceDelta": 0.5}]},
            {"key": "iced", "options": [{"label": "Iced", "valueType": "boolean", "value": True, "priceDelta": 0.25}]},
        ])

        assert option_price_delta_cents(product.id, {"shots": 2}) == 50
        assert option_price_delta_cents(product.id, {"shots": 2.0}) == 50
        assert option_price_delta_cents(product.id, {"shots": "2.0"}) == 50
        assert option_price_delta_cents(product.id, {"shots": "Double"}) == 50
        assert option_price_delta_cents(product.id, {"shots": 3}) == 0
        assert option_price_delta_cents(product.id, {"shots": "lots"}) == 0
        assert option_price_delta_cents(product.id, {"iced": True}) == 25
        assert option_price_delta_cents(product.id, {"iced": "yes"}) == 25
        assert option_price_delta_cents(product.id, {"iced": False}) == 0
