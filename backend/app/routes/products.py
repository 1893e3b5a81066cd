# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/app/routes/products.py
"""
Product routes.

SECURITY: All routes require authentication; writes require an admin.

Writes carry an optional `optionSchema` that fully replaces the product's
option groups. Responses echo the product as stored, plus `warnings` when
over-length labels or values were truncated.
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import products_service
from ..validation import ConflictError, NotFoundError, ReferentialConflictError, ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _server_error(e: Exception, what: str):
    current_app.logger.exception("%s failed", what)
    return jsonify({"message": "Server error", "error": str(e)}), 500


@products_bp.get("")
@require_auth
def list_products_route():
    """Query params: category (optional)."""
    try:
        return jsonify(products_service.list_products(category=request.args.get("category"))), 200
    except Exception as e:
        return _server_error(e, "List products")


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        return jsonify(products_service.list_low_stock_products()), 200
    except Exception as e:
        return _server_error(e, "Low stock listing")


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify(products_service.get_product(product_id)), 200
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404


@products_bp.get("/<int:product_id>/orders")
@require_auth
def product_orders_route(product_id: int):
    """Orders whose items reference the product (used before deleting it)."""
    try:
        return jsonify(products_service.find_orders_with_product(product_id)), 200
    except Exception as e:
        return _server_error(e, "Product order lookup")


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        created = products_service.create_product(payload)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except ConflictError as e:
        return jsonify({"message": str(e)}), 409
    except Exception as e:
        return _server_error(e, "Create product")

    return jsonify(created), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        updated = products_service.update_product(product_id, payload)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except ConflictError as e:
        return jsonify({"message": str(e)}), 409
    except Exception as e:
        return _server_error(e, "Update product")

    return jsonify(updated), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    """
    Query params: force=true also removes orders containing the product
    and its transaction items.
    """
    force = request.args.get("force", "").lower() == "true"

    try:
        products_service.delete_product(product_id, force=force)
    except ReferentialConflictError as e:
        return jsonify({"message": str(e), **e.details}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except ConflictError as e:
        return jsonify({"message": str(e)}), 409
    except Exception as e:
        return _server_error(e, "Delete product")

    return jsonify({"message": "Product deleted"}), 200
