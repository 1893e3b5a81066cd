"""
Product API tests.

Verifies:
- Writes are admin-only
- optionSchema on PUT fully replaces the stored schema without id churn
- A product locked by another writer surfaces as 409
- Delete refuses products in sale history unless forced
"""

from app.extensions import db
from app.models import Order, Product, ProductOptionGroup, ProductOptionValue, TransactionItem
from app.services import products_service
from app.services.concurrency import TransientError


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


# =============================================================================
# AUTHORIZATION
# =============================================================================


class TestProductAuthorization:

    def test_list_requires_token(self, client, db_session):
        response = client.get('/api/products')
        assert response.status_code == 401

    def test_staff_can_list(self, client, staff_headers, make_product):
        make_product(name="Latte")
        response = client.get('/api/products', headers=staff_headers)
        assert response.status_code == 200
        assert [p["name"] for p in response.json] == ["Latte"]

    def test_staff_cannot_create(self, client, staff_headers):
        response = client.post('/api/products', json={"name": "Tea", "price": 2}, headers=staff_headers)
        assert response.status_code == 403

    def test_staff_cannot_delete(self, client, staff_headers, make_product):
        product = make_product()
        response = client.delete(f'/api/products/{product.id}', headers=staff_headers)
        assert response.status_code == 403
        assert db.session.get(Product, product.id) is not None


# =============================================================================
# CREATE / UPDATE
# =============================================================================


class TestProductWrites:

    def test_create_with_schema(self, client, admin_headers):
        response = client.post('/api/products', json={
            "name": "Latte",
            "category": "Drinks",
            "price": 3.5,
            "hasStock": True,
            "stock": 20,
            "optionSchema": SIZE_SCHEMA,
        }, headers=admin_headers)

        assert response.status_code == 201
        data = response.json
        assert data["price"] == 3.5
        assert data["stock"] == 20
        assert data["optionSchema"][0]["key"] == "size"
        assert len(data["optionSchema"][0]["options"]) == 2
        assert "warnings" not in data

    def test_create_requires_name_and_price(self, client, admin_headers):
        response = client.post('/api/products', json={"name": "Latte"}, headers=admin_headers)
        assert response.status_code == 400
        assert "price" in response.json["message"]

    def test_create_rejects_unknown_field(self, client, admin_headers):
        response = client.post('/api/products', json={"name": "Latte", "price": 1, "sku": "X"}, headers=admin_headers)
        assert response.status_code == 400

    def test_stock_defaults_to_zero(self, client, admin_headers):
        response = client.post('/api/products', json={"name": "Muffin", "price": 2}, headers=admin_headers)
        assert response.status_code == 201
        assert response.json["stock"] == 0

    def test_put_same_schema_keeps_ids(self, client, admin_headers, make_product):
        product = make_product()

        first = client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)
        second = client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json["optionSchema"] == second.json["optionSchema"]
        assert db.session.query(ProductOptionGroup).count() == 1
        assert db.session.query(ProductOptionValue).count() == 2

    def test_put_without_schema_leaves_it(self, client, admin_headers, make_product):
        product = make_product()
        client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)

        response = client.put(f'/api/products/{product.id}', json={"price": 12.25}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json["price"] == 12.25
        assert len(response.json["optionSchema"]) == 1

    def test_put_empty_schema_clears(self, client, admin_headers, make_product):
        product = make_product()
        client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)

        response = client.put(f'/api/products/{product.id}', json={"optionSchema": []}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json["optionSchema"] == []
        assert db.session.query(ProductOptionGroup).count() == 0

    def test_put_invalid_schema(self, client, admin_headers, make_product):
        product = make_product()
        response = client.put(f'/api/products/{product.id}', json={"optionSchema": "size"}, headers=admin_headers)
        assert response.status_code == 400

    def test_put_truncation_warnings(self, client, admin_headers, make_product):
        product = make_product()
        response = client.put(f'/api/products/{product.id}', json={"optionSchema": [
            {"key": "size", "options": [{"label": "X" * 300, "value": "x"}]},
        ]}, headers=admin_headers)

        assert response.status_code == 200
        assert len(response.json["warnings"]) == 1
        assert len(response.json["optionSchema"][0]["options"][0]["label"]) == 255

    def test_put_missing_product(self, client, admin_headers):
        response = client.put('/api/products/999', json={"price": 1}, headers=admin_headers)
        assert response.status_code == 404

    def test_put_locked_product_returns_409(self, client, admin_headers, make_product, monkeypatch):
        product = make_product()

        def busy(model, row_id):
            raise TransientError("products row is being edited by another writer")

        monkeypatch.setattr(products_service, "lock_row_nowait", busy)
        response = client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)

        assert response.status_code == 409
        assert db.session.query(ProductOptionGroup).count() == 0

    def test_metadata_round_trip(self, client, admin_headers, make_product):
        product = make_product()
        response = client.put(f'/api/products/{product.id}', json={"metadata": {"color": "red"}}, headers=admin_headers)
        assert response.json["metadata"] == {"color": "red"}


# =============================================================================
# READS
# =============================================================================


class TestProductReads:

    def test_category_filter(self, client, staff_headers, make_product):
        make_product(name="Latte", category="Drinks")
        make_product(name="Bagel", category="Food")

        response = client.get('/api/products?category=Food', headers=staff_headers)

        assert [p["name"] for p in response.json] == ["Bagel"]

    def test_low_stock(self, client, staff_headers, make_product):
        make_product(name="Low", stock=2, low_stock_threshold=5)
        make_product(name="Plenty", stock=50, low_stock_threshold=5)
        make_product(name="Untracked", stock=None, has_stock=False)

        response = client.get('/api/products/low-stock', headers=staff_headers)

        assert [p["name"] for p in response.json] == ["Low"]

    def test_get_missing(self, client, staff_headers):
        response = client.get('/api/products/999', headers=staff_headers)
        assert response.status_code == 404

    def test_orders_containing_product(self, client, staff_headers, make_product):
        product = make_product()
        other = make_product(name="Tea")
        client.post('/api/orders', json={"items": [{"productId": product.id, "quantity": 1}]}, headers=staff_headers)
        client.post('/api/orders', json={"items": [{"productId": other.id, "quantity": 1}]}, headers=staff_headers)

        response = client.get(f'/api/products/{product.id}/orders', headers=staff_headers)

        assert response.json["hasOrders"] is True
        assert len(response.json["orders"]) == 1


# =============================================================================
# DELETE
# =============================================================================


class TestProductDelete:

    def test_delete_unreferenced(self, client, admin_headers, make_product):
        product = make_product()
        client.put(f'/api/products/{product.id}', json={"optionSchema": SIZE_SCHEMA}, headers=admin_headers)

        response = client.delete(f'/api/products/{product.id}', headers=admin_headers)

        assert response.status_code == 200
        assert db.session.query(Product).count() == 0
        assert db.session.query(ProductOptionGroup).count() == 0
        assert db.session.query(ProductOptionValue).count() == 0

    def test_delete_in_sale_history_refused(self, client, admin_headers, make_product):
        product = make_product()
        client.post('/api/transactions', json={
            "items": [{"productId": product.id, "quantity": 1}],
            "paymentMethod": "cash",
            "cashReceived": 10,
        }, headers=admin_headers)

        response = client.delete(f'/api/products/{product.id}', headers=admin_headers)

        assert response.status_code == 400
        assert response.json["hasTransactionItems"] is True
        assert db.session.get(Product, product.id) is not None

    def test_force_delete(self, client, admin_headers, make_product):
        product = make_product()
        client.post('/api/transactions', json={
            "items": [{"productId": product.id, "quantity": 1}],
            "paymentMethod": "cash",
            "cashReceived": 10,
        }, headers=admin_headers)
        client.post('/api/orders', json={"items": [{"productId": product.id, "quantity": 1}]}, headers=admin_headers)

        response = client.delete(f'/api/products/{product.id}?force=true', headers=admin_headers)

        assert response.status_code == 200
        assert db.session.query(Product).count() == 0
        assert db.session.query(Order).count() == 0
        assert db.session.query(TransactionItem).count() == 0

    def test_delete_missing(self, client, admin_headers):
        response = client.delete('/api/products/999', headers=admin_headers)
        assert response.status_code == 404
