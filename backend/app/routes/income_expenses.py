# Overview: Flask API routes for income/expense operations; parses input and returns JSON responses.

# backend/app/routes/income_expenses.py
"""
Income / expense ledger routes. Entries are scoped to the calling user.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import income_expense_service
from ..validation import NotFoundError, ValidationError

income_expenses_bp = Blueprint("income_expenses", __name__, url_prefix="/api/income-expenses")


def _server_error(e: Exception, what: str):
    current_app.logger.exception("%s failed", what)
    return jsonify({"message": "Server error", "error": str(e)}), 500


@income_expenses_bp.get("")
@require_auth
def list_entries_route():
    """Query params: startDate, endDate, type, category (all optional)."""
    try:
        result = income_expense_service.list_entries(
            g.current_user.id,
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            entry_type=request.args.get("type"),
            category=request.args.get("category"),
        )
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except Exception as e:
        return _server_error(e, "List income/expenses")

    return jsonify(result), 200


@income_expenses_bp.post("")
@require_auth
def create_entry_route():
    payload = request.get_json(silent=True) or {}

    try:
        entry = income_expense_service.create_entry(g.current_user.id, payload)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except Exception as e:
        return _server_error(e, "Create income/expense")

    return jsonify(entry), 201


@income_expenses_bp.delete("/bulk")
@require_auth
def bulk_delete_entries_route():
    payload = request.get_json(silent=True) or {}

    try:
        deleted = income_expense_service.bulk_delete_entries(g.current_user.id, payload.get("ids"))
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except Exception as e:
        return _server_error(e, "Bulk delete income/expenses")

    return jsonify({"message": f"{deleted} entries deleted", "deleted": deleted}), 200


@income_expenses_bp.put("/<int:entry_id>")
@require_auth
def update_entry_route(entry_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        entry = income_expense_service.update_entry(entry_id, g.current_user.id, payload)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception as e:
        return _server_error(e, "Update income/expense")

    return jsonify(entry), 200


@income_expenses_bp.delete("/<int:entry_id>")
@require_auth
def delete_entry_route(entry_id: int):
    try:
        income_expense_service.delete_entry(entry_id, g.current_user.id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception as e:
        return _server_error(e, "Delete income/expense")

    return jsonify({"message": "Entry deleted"}), 200
