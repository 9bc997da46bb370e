from functools import wraps
from flask import g, jsonify

ROLE_MEMBER = "MEMBER"
ROLE_ADMIN = "ADMIN"


def org_role(org_id):
    user = getattr(g, "user", None)
    if not user:
        return None
    # Resolved once per request for the org in the path
    if org_id == getattr(g, "org_id", None):
        return g.org_role
    return user.role_in(org_id)


def is_org_admin(org_id) -> bool:
    return org_role(org_id) == ROLE_ADMIN


def require_org_roles(*role_names: str):
    """
    Usage: @require_org_roles("ADMIN") on a route taking ``org_id``.
    Roles are per organization: an admin of one tenant is nobody in another.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            role = org_role(kwargs.get("org_id"))
            if role is None or role not in role_names:
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
