"""Standardised API error responses.

Usage
-----
    from fitout.utils.errors import api_error, E, register_error_handlers

    return api_error(E.VALIDATION_REQUIRED, "vendor_id is required")

    bp = Blueprint("bidding", __name__, url_prefix="/api/v1")
    register_error_handlers(bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from fitout.core.exceptions import ConcurrencyConflictError, WorkflowError
from fitout.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Workflow precondition codes (``ROUND_LOCKED``, ``VENDOR_NOT_SELECTED``...)
    are raised by the services themselves and passed through unchanged.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Permissions – HTTP 403
    FORBIDDEN = "ROLE_NOT_PERMITTED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants or a workflow
        precondition code).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (current state, offending field...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the workflow exception handlers to a blueprint."""

    @bp.errorhandler(WorkflowError)
    def _handle_workflow_error(error: WorkflowError):
        if isinstance(error, ConcurrencyConflictError):
            logger.warning("Concurrent modification endpoint=%s: %s", request.endpoint, error)
        else:
            logger.info("Transition rejected endpoint=%s code=%s: %s", request.endpoint, error.code, error)
        return api_error(error.code, str(error), status=error.status, details=error.details)

    @bp.errorhandler(SQLAlchemyError)
    def _handle_store_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Store failure endpoint=%s", request.endpoint)
        return api_error(E.DATABASE, "Database error; the transition was not applied")
