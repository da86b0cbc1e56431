"""
Atomic batch and lookup helpers shared by the workflow services.

Every transition reads and guards first, then stages all of its writes (state
flip plus fan-out) inside one ``atomic_batch`` block. Either everything lands
or nothing does; a caller never observes a half-applied transition.

Versioned aggregates (``version_id_col``) turn a concurrent overwrite into
``StaleDataError`` at flush time. ``atomic_batch`` rolls back and re-raises it
as ``ConcurrencyConflictError`` so the client can reload and retry.

Usage:
    case = get_or_raise(Case, case_id)
    ...guard reads, raise before any write...
    with atomic_batch(case):
        ...stage writes...
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fitout.core.exceptions import ConcurrencyConflictError, NotFoundError
from fitout.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, *, case_id: int | None = None):
    """Fetch ``model`` by PK or raise NotFoundError.

    When ``case_id`` is given the row must also belong to that case, so a
    child id from another case reads as missing.
    """
    if case_id is not None:
        if not hasattr(model, "case_id"):
            raise ValueError(f"{model.__name__} has no case_id column to scope by")
        obj = db.session.execute(
            select(model).where(model.id == pk, model.case_id == case_id)
        ).scalar_one_or_none()
    else:
        obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return obj


@contextmanager
def atomic_batch(anchor):
    """Stage the writes of one transition and commit them together.

    Args:
        anchor: The aggregate the transition is about; named in the conflict
            error so the client knows what to reload.

    Raises:
        ConcurrencyConflictError: a versioned row changed underneath us.
        IntegrityError: a unique constraint fired (after rollback); callers
            that expect one translate it into ConflictError.
        Anything raised inside the block, after rollback.
    """
    resource = type(anchor).__name__
    resource_id = getattr(anchor, "id", None)
    try:
        yield
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "Optimistic version check failed for %s id=%s: %s", resource, resource_id, exc,
        )
        raise ConcurrencyConflictError(resource, resource_id) from exc
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error committing %s id=%s: %s", resource, resource_id, exc.orig)
        raise
    except Exception:
        db.session.rollback()
        raise
