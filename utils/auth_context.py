from functools import wraps
from flask import g, jsonify, request
from security.session import get_session_from_request
from models import db
from models.user import User

def load_current_user():
    """
    Resolves the session into g.user and, on /orgs/<org_id>/... routes,
    the caller's role in that organization into g.org_role.
    """
    g.user = None
    g.session = None
    g.org_id = (request.view_args or {}).get("org_id")
    g.org_role = None

    sess = get_session_from_request()
    if not sess:
        return
    user = db.session.get(User, sess.user_id)
    if user is None:
        # Session outlived its user
        return

    g.session = sess
    g.user = user
    if g.org_id is not None:
        g.org_role = user.role_in(g.org_id)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
