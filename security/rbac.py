from functools import wraps
from flask import g, jsonify

from utils.audit import log_event

# Holders of this role pass every role check
SUPERUSER_ROLE = "SUPER_ADMIN"


def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    Refusals of a signed-in user are written to the security event log.
    """
    allowed = frozenset(role_names) | {SUPERUSER_ROLE}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            if not any(user.has_role(name) for name in allowed):
                log_event("ACCESS_DENIED", "medium", user_id=user.id, details={"required": sorted(role_names)})
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
