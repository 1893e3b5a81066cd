# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"message": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"message": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require an admin operator. Must be stacked under @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"message": "Authentication required"}), 401
        if not user.is_admin:
            return jsonify({"message": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
