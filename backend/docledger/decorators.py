# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.tenant_service import TenantAccessError, resolve_tenant_user

ORG_HEADER = "X-Org-Id"
USER_HEADER = "X-User-Id"


def _header_int(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_tenant(f):
    """
    Establish tenant context from the upstream auth gateway's headers.

    Authentication happens before requests reach this service; the gateway
    forwards the caller's organization and user ids. Sets:
    - g.current_user: the active User
    - g.org_id: the organization ID (tenant context)

    Returns 401 when either header is missing or the user is not an active
    member of that organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = _header_int(ORG_HEADER)
        user_id = _header_int(USER_HEADER)
        if org_id is None or user_id is None:
            return jsonify({"error": "Tenant context required"}), 401

        try:
            user = resolve_tenant_user(org_id, user_id)
        except TenantAccessError:
            return jsonify({"error": "Invalid tenant context"}), 401

        g.current_user = user
        g.org_id = org_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Restrict a route to users holding one of the given roles.

    Must be applied after @require_tenant. Returns 403 otherwise.
    """
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Tenant context required"}), 401
            if user.role not in allowed:
                return jsonify({"error": "Insufficient role"}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
