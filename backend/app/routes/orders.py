# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

# backend/app/routes/orders.py
"""
Order routes.

Creating an order reserves stock; deleting one gives it back and removes
the sale records written when it was paid.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import order_service
from ..validation import NotFoundError, ServerError, ValidationError

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _server_error(e: Exception, what: str):
    current_app.logger.exception("%s failed", what)
    return jsonify({"message": "Server error", "error": str(e)}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """The caller's orders, newest first."""
    try:
        return jsonify(order_service.list_orders(g.current_user.id)), 200
    except Exception as e:
        return _server_error(e, "List orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    payload = request.get_json(silent=True) or {}

    try:
        order = order_service.create_order(g.current_user.id, payload)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except ServerError as e:
        current_app.logger.error("Create order gave up: %s", e)
        return jsonify({"message": "Server error", "error": str(e)}), 500
    except Exception as e:
        return _server_error(e, "Create order")

    return jsonify(order), 201


@orders_bp.put("/<int:order_id>")
@require_auth
def update_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        return jsonify(order_service.update_order(order_id, payload)), 200
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception as e:
        return _server_error(e, "Update order")


@orders_bp.put("/<int:order_id>/status")
@require_auth
def update_order_status_route(order_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        return jsonify(order_service.update_order_status(order_id, payload.get("status"))), 200
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception as e:
        return _server_error(e, "Update order status")


@orders_bp.put("/<int:order_id>/payment")
@require_auth
def update_order_payment_route(order_id: int):
    """
    Body: {paymentStatus, paymentMethod, discount?, cashReceived?}

    Marking an order paid records its Transaction and Sales income entry.
    """
    payload = request.get_json(silent=True) or {}

    try:
        result = order_service.mark_order_paid(order_id, payload, user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except ServerError as e:
        current_app.logger.error("Order payment gave up: %s", e)
        return jsonify({"message": "Server error", "error": str(e)}), 500
    except Exception as e:
        return _server_error(e, "Order payment")

    return jsonify(result), 200


@orders_bp.delete("/bulk")
@require_auth
def bulk_delete_orders_route():
    """Body: {ids: [...]}. All listed orders go in one unit of work."""
    payload = request.get_json(silent=True) or {}

    try:
        deleted = order_service.bulk_delete_orders(payload.get("ids"))
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except Exception as e:
        return _server_error(e, "Bulk delete orders")

    return jsonify({"message": f"{deleted} order(s) deleted", "deleted": deleted}), 200


@orders_bp.delete("/<int:order_id>")
@require_auth
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception as e:
        return _server_error(e, "Delete order")

    return jsonify({"message": "Order deleted"}), 200
