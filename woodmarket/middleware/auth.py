from functools import wraps
from flask import current_app, request, jsonify, g

from woodmarket.services.errors import InvalidCredentials


def get_services():
    """The ``Services`` registry attached by the application factory."""
    return current_app.extensions["woodmarket"]


def bearer_token() -> str:
    return request.headers.get("Authorization", "").replace("Bearer ", "", 1).strip()


def require_auth(f):
    """Middleware to require an authenticated session token."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"message": "Authentication required"}), 401

        try:
            g.current_user = get_services().auth.current_user(token)
        except InvalidCredentials:
            return jsonify({"message": "Invalid or expired session"}), 401
        g.session_token = token

        return f(*args, **kwargs)
    return decorated


def require_role(role):
    """Middleware to require a user role."""
    def decorator(f):
        @wraps(f)
        @require_auth
        def decorated(*args, **kwargs):
            if g.current_user.role != role:
                return jsonify({"message": f"Access denied. Required role: {role}"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator
