"""
Acting-user resolution.

Authentication happens upstream (gateway / identity provider); it forwards the
resolved user as headers:

    X-User-Id     opaque user id (vendor id for vendors, client id for clients)
    X-User-Name   display name, snapshotted into activity lines
    X-User-Role   one of fitout.models.roles.Role

``init_identity`` resolves them into ``g.actor`` for every /api/ request.
Routes that perform transitions are wrapped with ``actor_required``.
"""

import logging
from functools import wraps

from flask import g, request

from fitout.models.roles import ROLE_VALUES, Actor, Role
from fitout.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
USER_ROLE_HEADER = "X-User-Role"


def resolve_actor(headers) -> Actor | None:
    """Build an Actor from request headers; None when no user is asserted.

    Raises:
        ValueError: a user id is present but the role is missing or unknown.
    """
    user_id = (headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        return None
    role = (headers.get(USER_ROLE_HEADER) or "").strip().lower()
    if role not in ROLE_VALUES:
        raise ValueError(f"Unknown or missing role '{role}'")
    return Actor(id=user_id, role=Role(role), name=(headers.get(USER_NAME_HEADER) or "").strip())


def init_identity(app):
    """Register the before_request hook that populates ``g.actor``."""

    @app.before_request
    def _resolve_actor():
        g.actor = None
        if not request.path.startswith("/api/"):
            return None
        try:
            g.actor = resolve_actor(request.headers)
        except ValueError as exc:
            logger.info("Rejected identity headers path=%s: %s", request.path, exc)
            return api_error(E.UNAUTHENTICATED, str(exc), status=401)
        return None


def actor_required(fn):
    """Reject the request with 401 unless an acting user was resolved."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "actor", None) is None:
            return api_error(
                E.UNAUTHENTICATED,
                f"{USER_ID_HEADER} and {USER_ROLE_HEADER} headers are required",
                status=401,
            )
        return fn(*args, **kwargs)

    return wrapper
