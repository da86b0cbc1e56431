"""
Tests: Change feed notifications.

Subscribers hear about a collection only after a commit touched it.
"""

import logging

from fitout.models import db
from fitout.models.case import Case
from fitout.services import case_service, change_feed


def test_subscriber_notified_after_commit(actors):
    seen = []
    change_feed.subscribe("cases", seen.append)

    case_service.create_case("Lobby refresh", actors.sales)

    assert seen == ["cases"]


def test_unsubscribe_stops_notifications(actors):
    seen = []
    unsubscribe = change_feed.subscribe("cases", seen.append)
    unsubscribe()
    unsubscribe()

    case_service.create_case("Lobby refresh", actors.sales)

    assert seen == []


def test_wildcard_receives_every_collection(actors):
    seen = []
    change_feed.subscribe(change_feed.ALL_COLLECTIONS, seen.append)

    case_service.create_case("Lobby refresh", actors.sales)

    assert "cases" in seen
    assert "case_activities" in seen


def test_rolled_back_flush_is_not_published():
    seen = []
    change_feed.subscribe(change_feed.ALL_COLLECTIONS, seen.append)

    db.session.add(Case(code="CASE-900", title="Scratch", status="lead", is_project=False))
    db.session.flush()
    db.session.rollback()

    assert seen == []


def test_failing_subscriber_does_not_break_others(actors, caplog):
    seen = []

    def broken(collection):
        raise RuntimeError("dashboard offline")

    change_feed.subscribe("cases", broken)
    change_feed.subscribe("cases", seen.append)

    with caplog.at_level(logging.ERROR, logger="fitout.services.change_feed"):
        created = case_service.create_case("Lobby refresh", actors.sales)

    assert seen == ["cases"]
    assert case_service.get_case(created["id"])["title"] == "Lobby refresh"
    assert any("subscriber failed" in r.getMessage() for r in caplog.records)
