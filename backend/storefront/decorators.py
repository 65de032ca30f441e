# Overview: Request decorators for API routes (authentication and admin guard).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the AuthenticatedUser{id, role} the fulfillment
    core consumes. Returns 401 if the header is missing or the token is
    invalid, expired, revoked or belongs to an inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the admin role. Must be stacked under @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        if not g.current_user.is_admin:
            return jsonify({"error": "Permission denied"}), 403

        return f(*args, **kwargs)

    return decorated_function
