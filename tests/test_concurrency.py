"""
Tests: Optimistic concurrency on versioned aggregates.

A concurrent writer is simulated by bumping the stored version behind the
session's back while the in-session object still carries the old one. The
next flush then matches zero rows and the whole batch must roll back.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from fitout.core.exceptions import ConcurrencyConflictError, StateTransitionError
from fitout.models import db
from fitout.models.bidding import BidRound
from fitout.models.case import Case, CostCenter
from fitout.models.execution import ExecutionPlan
from fitout.services import bid_round_service as rounds
from fitout.services import case_service, cost_center_service
from fitout.services import execution_plan_service as plans


def _simulate_concurrent_write(obj):
    model = type(obj)
    seen = obj.version
    db.session.execute(
        update(model).where(model.id == obj.id).values(version=model.version + 1)
    )
    db.session.commit()
    db.session.refresh(obj)
    set_committed_value(obj, "version", seen)


def test_stale_activation_rolls_back_everything(planned_case, actors):
    case_id = planned_case["id"]
    plans.approve_plan(case_id, "preparer", actors.execution)
    plans.approve_plan(case_id, "admin", actors.admin)
    plan = ExecutionPlan.query.filter_by(case_id=case_id).one()
    _simulate_concurrent_write(plan)

    with pytest.raises(ConcurrencyConflictError):
        plans.approve_plan(case_id, "client", actors.client)

    assert CostCenter.query.filter_by(case_id=case_id).count() == 0
    assert case_service.get_case(case_id)["status"] == "planning_submitted"
    assert plans.get_plan(case_id)["approvals"]["client"]["state"] == "pending"

    # reload and retry
    retried = plans.approve_plan(case_id, "client", actors.client)
    assert retried["locked"] is True
    assert CostCenter.query.filter_by(case_id=case_id).count() == 1


def test_second_cost_center_is_refused(planned_case, actors):
    case_id = planned_case["id"]
    plans.approve_plan(case_id, "preparer", actors.execution)
    plans.approve_plan(case_id, "admin", actors.admin)
    db.session.add(CostCenter(
        case_id=case_id, total_budget=1, spent_amount=0, remaining_amount=1,
        initialized_by="someone-else", initialized_at=datetime.now(timezone.utc),
    ))
    db.session.commit()

    with pytest.raises(StateTransitionError) as exc:
        plans.approve_plan(case_id, "client", actors.client)

    assert exc.value.code == "COST_CENTER_EXISTS"
    assert db.session.get(Case, case_id).status == "planning_submitted"
    assert plans.get_plan(case_id)["locked"] is False


def test_stale_spend_is_not_lost_or_applied(active_case, actors):
    case_id = active_case["id"]
    cost_center = CostCenter.query.filter_by(case_id=case_id).one()
    _simulate_concurrent_write(cost_center)

    with pytest.raises(ConcurrencyConflictError):
        cost_center_service.record_spend(case_id, 1000, "materials", actors.accounts)

    after = cost_center_service.get_cost_center(case_id)
    assert after["spent_amount"] == 0.0
    assert after["entries"] == []

    cost_center_service.record_spend(case_id, 1000, "materials", actors.accounts)
    assert cost_center_service.get_cost_center(case_id)["spent_amount"] == 1000.0


def test_stale_bid_round_approval(approved_quotation, actors):
    round_ = rounds.create_round(approved_quotation["id"], ["V-A"], actors.procurement)
    vendor = actors.vendor("V-A")
    rounds.submit_bid(round_["id"], "V-A", 1000, 5, vendor)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    _simulate_concurrent_write(db.session.get(BidRound, round_["id"]))

    with pytest.raises(ConcurrencyConflictError):
        rounds.set_admin_approval(round_["id"], actors.admin)

    assert rounds.get_round(round_["id"])["admin_approved_at"] is None
