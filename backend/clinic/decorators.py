# Overview: Request decorators for API routes (bearer-token auth and account-type gates).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.auth to the caller's AuthContext (subject_id, subject_type) and
    g.token to the raw bearer token (used by logout).

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - Account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "unauthorized", "message": "Invalid or expired token"}), 401

        g.auth = context
        g.token = token
        return f(*args, **kwargs)

    return decorated_function


def require_subject_type(*subject_types: str):
    """
    Restrict a route to the given account types. Admins always pass.

    Must be applied after @require_auth.
    """
    allowed = frozenset(subject_types)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            auth = getattr(g, "auth", None)
            if auth is None:
                return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

            if not auth.is_admin and auth.subject_type not in allowed:
                return jsonify({
                    "error": "forbidden",
                    "message": "Not allowed for this account type",
                    "details": {"required": sorted(allowed)},
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
