from flask import Blueprint, current_app, jsonify, request

from app.decorators import require_auth
from app.services import reporting_service
from app.validation import ValidationError


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales-summary")
@require_auth
def sales_summary_report():
    period = request.args.get("period", reporting_service.PERIOD_MONTHLY)
    start_date = request.args.get("startDate")
    end_date = request.args.get("endDate")
    category = request.args.get("category")

    try:
        report = reporting_service.sales_summary(
            period=period,
            start_date=start_date,
            end_date=end_date,
            category=category,
        )
        return jsonify(report), 200
    except ValidationError as exc:
        return jsonify({"message": str(exc)}), 400
    except Exception as exc:
        current_app.logger.exception("Sales summary failed")
        return jsonify({"message": "Server error", "error": str(exc)}), 500
