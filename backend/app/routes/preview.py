# backend/app/routes/preview.py
"""
Customer-display preview feed.

- POST /api/preview  {snapshot} -> 202 {delivered, persisted}; broadcast first,
                     then written before the reply
- GET  /api/preview  latest persisted snapshot of the caller
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import preview_service
from ..validation import ValidationError

preview_bp = Blueprint("preview", __name__, url_prefix="/api/preview")


@preview_bp.get("")
@require_auth
def latest_preview_route():
    snapshot = preview_service.latest_snapshot(g.current_user.id)
    return jsonify(snapshot or {"userId": g.current_user.id, "snapshot": None, "updatedAt": None}), 200


@preview_bp.post("")
@require_auth
def publish_preview_route():
    payload = request.get_json(silent=True) or {}
    snapshot = payload.get("snapshot", payload)

    try:
        result = preview_service.publish_snapshot(g.current_user.id, snapshot)
    except ValidationError as e:
        return jsonify({"message": str(e)}), 400

    return jsonify(result), 202
