# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .actor import Actor, VALID_ROLES


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw.strip())


def require_actor(f):
    """
    Establish the acting user from headers supplied by the auth layer.

    Sets g.actor from:
    - X-User-Id: integer user id - REQUIRED
    - X-User-Role: one of GROUP, LOCAL_SUBCOMMITTEE, LOCALITY, REGION, ADMIN - REQUIRED
    - X-Organization-Id: integer organization id (may be absent for admins)

    Returns 401 if the actor is missing or malformed. Tokens are verified
    upstream; nothing here authenticates.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id = _header_int("X-User-Id")
            organization_id = _header_int("X-Organization-Id")
        except ValueError:
            return jsonify({"error": "Invalid actor headers"}), 401

        role = (request.headers.get("X-User-Role") or "").strip().upper()

        if user_id is None or not role:
            return jsonify({"error": "Actor required"}), 401
        if role not in VALID_ROLES:
            return jsonify({"error": f"Unknown role: {role}"}), 401

        g.actor = Actor(user_id=user_id, role=role, organization_id=organization_id)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require @require_actor to have run with an ADMIN actor."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = getattr(g, "actor", None)
        if actor is None:
            return jsonify({"error": "Actor required"}), 401
        if not actor.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated_function
