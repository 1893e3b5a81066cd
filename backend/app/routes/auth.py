# backend/app/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login   username + password -> bearer token
- POST /api/auth/logout  revokes the presented token
- GET  /api/auth/me      the authenticated operator
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import bearer_token, require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"message": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"message": "Invalid credentials"}), 400

        session, token = session_service.create_session(user_id=user.id)

        return jsonify({
            "token": token,
            "expiresAt": session.expires_at.isoformat() + "Z",
            "user": user.to_dict(),
        }), 200
    except Exception as e:
        current_app.logger.exception("Login failed")
        return jsonify({"message": "Server error", "error": str(e)}), 500


@auth_bp.post("/logout")
def logout_route():
    token = bearer_token()
    if token:
        session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(g.current_user.to_dict()), 200
