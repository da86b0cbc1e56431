"""
In-process change feed.

Downstream dashboards subscribe per collection (table name) and are told,
after every successful commit, which collections changed. Subscribers re-read
the full current state themselves; the feed never carries deltas.

Flushed-but-rolled-back work never reaches subscribers: changed table names
are gathered on ``after_flush`` and only published on ``after_commit``.

Usage:
    unsubscribe = change_feed.subscribe("bid_rounds", refresh_board)
    ...
    unsubscribe()

Subscribing to ``"*"`` receives every collection.
"""

import logging
import threading
from collections import defaultdict

from sqlalchemy import event

from fitout.models import db

logger = logging.getLogger(__name__)

ALL_COLLECTIONS = "*"

_PENDING_KEY = "fitout_changed_collections"

_subscribers = defaultdict(list)
_lock = threading.Lock()
_installed = False


def subscribe(collection: str, callback):
    """Register ``callback(collection_name)`` for one collection.

    Returns:
        A zero-argument callable that removes the subscription. Calling it
        more than once is harmless.
    """
    if not callable(callback):
        raise TypeError("callback must be callable")
    with _lock:
        _subscribers[collection].append(callback)

    def unsubscribe():
        with _lock:
            callbacks = _subscribers.get(collection, [])
            if callback in callbacks:
                callbacks.remove(callback)

    return unsubscribe


def clear_subscribers():
    with _lock:
        _subscribers.clear()


def publish(collections):
    """Deliver change notifications to subscribers of each collection.

    A failing subscriber is logged and skipped; the commit it observes has
    already happened and other subscribers still get notified.
    """
    for collection in sorted(set(collections)):
        with _lock:
            callbacks = list(_subscribers.get(collection, ())) + list(
                _subscribers.get(ALL_COLLECTIONS, ())
            )
        for callback in callbacks:
            try:
                callback(collection)
            except Exception:
                logger.exception(
                    "Change-feed subscriber failed",
                    extra={"entity_type": collection},
                )


# ── Session hooks ─────────────────────────────────────────────────────────────


def _collect(session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, set())
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        table = getattr(obj, "__tablename__", None)
        if table:
            pending.add(table)


def _publish_committed(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        publish(pending)


def _discard(session):
    session.info.pop(_PENDING_KEY, None)


def init_change_feed(app=None):
    """Attach the feed to the Flask-SQLAlchemy session. Idempotent."""
    global _installed
    if _installed:
        return
    event.listen(db.session, "after_flush", _collect)
    event.listen(db.session, "after_commit", _publish_committed)
    event.listen(db.session, "after_soft_rollback", lambda session, previous: _discard(session))
    _installed = True
    if app is not None:
        app.logger.debug("Change feed attached")
