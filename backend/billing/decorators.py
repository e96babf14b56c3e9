# Overview: Request decorators for API routes: bearer sessions and role checks.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'identity')


def require_auth(f):
    """
    Require a bearer session and establish the identity context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.identity: Identity(role, vendor_id, customer_id)

    The vendor a request acts for is resolved per route with
    tenant_service.resolve_vendor_scope, since admins pick it per request.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        identity = session_service.validate_session(token)

        if not identity:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Restrict a route to some roles. Must be applied after @require_auth.

    Customers are read-only throughout, so every write route uses
    @require_role("vendor", "admin").
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.identity.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
