# Overview: Flask API routes for transactions operations; parses input and returns JSON responses.

# backend/app/routes/transactions.py
"""
Direct POS sales.

POST body: {items, paymentMethod, subtotal, discount, total, cashReceived?, status?}
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import transaction_service
from ..validation import ServerError, ValidationError

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    Query params:
    - startDate / endDate: YYYY-MM-DD, inclusive (optional)
    - status: paid | unpaid | partial (optional)
    """
    try:
        result = transaction_service.list_transactions(
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            status=request.args.get("status"),
        )
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("List transactions failed")
        return jsonify({"message": "Server error", "error": str(e)}), 500

    return jsonify(result), 200


@transactions_bp.post("")
@require_auth
def create_transaction_route():
    payload = request.get_json(silent=True) or {}

    try:
        tx = transaction_service.create_transaction(g.current_user.id, payload)
    except ValidationError as e:
        # Includes InsufficientPaymentError
        return jsonify({"message": str(e)}), 400
    except ServerError as e:
        current_app.logger.error("Transaction gave up: %s", e)
        return jsonify({"message": "Server error", "error": str(e)}), 500
    except Exception as e:
        current_app.logger.exception("Create transaction failed")
        return jsonify({"message": "Server error", "error": str(e)}), 500

    return jsonify(tx), 201
