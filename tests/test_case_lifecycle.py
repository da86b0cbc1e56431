"""
Tests: Case lifecycle, BOQ and task handling.

    lead → waiting_for_planning → planning_in_progress → planning_submitted
         → execution_active → completed
"""

import pytest

from fitout.core.exceptions import PermissionDeniedError, StateTransitionError, ValidationError
from fitout.services import activity_service, case_service


def test_case_codes_are_sequential(actors):
    first = case_service.create_case("Office fit-out", actors.sales, estimated_budget="250000")
    second = case_service.create_case("Retail kiosk", actors.quoter)

    assert first["code"] == "CASE-001"
    assert second["code"] == "CASE-002"
    assert first["status"] == "lead"
    assert first["is_project"] is False
    assert first["estimated_budget"] == 250000.0


def test_case_creation_roles_and_title(actors):
    with pytest.raises(PermissionDeniedError):
        case_service.create_case("Office fit-out", actors.client)
    with pytest.raises(ValidationError):
        case_service.create_case("   ", actors.sales)


def test_conversion_needs_approved_quotation(case, actors):
    with pytest.raises(StateTransitionError) as exc:
        case_service.convert_to_project(case["id"], actors.sales)
    assert exc.value.code == "QUOTATION_NOT_APPROVED"


def test_conversion_happens_once(project_case, actors):
    assert project_case["status"] == "waiting_for_planning"
    assert project_case["is_project"] is True

    with pytest.raises(StateTransitionError) as exc:
        case_service.convert_to_project(project_case["id"], actors.sales)
    assert exc.value.code == "CASE_ALREADY_PROJECT"


def test_complete_only_active_cases(planned_case, active_case, actors):
    with pytest.raises(StateTransitionError) as exc:
        case_service.complete_case(planned_case["id"], actors.execution)
    assert exc.value.code == "CASE_NOT_ACTIVE"

    done = case_service.complete_case(active_case["id"], actors.execution)
    assert done["status"] == "completed"
    assert done["completed_at"] is not None


def test_list_cases_filters_by_status(case, project_case, actors):
    other = case_service.create_case("Retail kiosk", actors.sales)

    leads = case_service.list_cases("lead")

    assert [c["id"] for c in leads] == [other["id"]]
    assert len(case_service.list_cases()) == 2
    with pytest.raises(ValidationError):
        case_service.list_cases("archived")


def test_boq_totals_and_roles(case, actors):
    boq = case_service.create_boq(
        case["id"],
        [{"item_id": "TILE-01", "description": "Floor tile", "quantity": 2, "rate": 500}],
        actors.quoter,
        title="Ground floor",
    )
    assert boq["locked"] is False
    assert boq["lines"][0]["quantity"] == 2.0

    updated = case_service.update_boq(
        boq["id"], [{"item_id": "PAINT-20", "description": "Wall paint", "quantity": 3, "rate": 100}], actors.sales,
    )
    assert [line["item_id"] for line in updated["lines"]] == ["PAINT-20"]

    with pytest.raises(PermissionDeniedError):
        case_service.update_boq(boq["id"], [], actors.client)


# ── Tasks and activity log ───────────────────────────────────────────────────


def test_assigned_role_starts_task(case, actors):
    from fitout.services import quotation_audit_service as audit

    audit.submit_quotation(case["id"], [{"item_id": "X", "quantity": 1, "unit_price": 10}], actors.quoter)
    task = activity_service.list_tasks(case["id"], status="pending")[0]
    assert task["assigned_role"] == "procurement"

    with pytest.raises(PermissionDeniedError):
        activity_service.start_task(task["id"], actors.sales)

    started = activity_service.start_task(task["id"], actors.procurement)
    assert started["status"] == "started"
    assert started["started_at"] is not None

    with pytest.raises(StateTransitionError) as exc:
        activity_service.start_task(task["id"], actors.admin)
    assert exc.value.code == "TASK_STATE_INVALID"


def test_activity_log_is_newest_first(active_case):
    actions = [a["action"] for a in activity_service.list_activities(active_case["id"])]

    assert actions[0] == "execution_plan.activate"
    assert actions[-1] == "case.create"
    assert "quotation.approve" in actions
    assert "case.convert" in actions
