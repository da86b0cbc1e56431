"""
Execution Plan three-party approval.

Per party (preparer, admin, client):   pending ──approve──▶ approved   (one-way)
Plan:   draft ──preparer──▶ awaiting_approval ──admin+client──▶ locked
        draft | awaiting_approval ──reject──▶ (plan deleted, case back to waiting)

Case cascade:
    waiting_for_planning ──submit_plan──▶ planning_in_progress
    planning_in_progress ──preparer approves──▶ planning_submitted
    planning_submitted ──all three approved──▶ execution_active

Activation (exactly once):
    When the third approval lands, one atomic batch flips the case to
    execution_active, locks the plan, creates the cost center from the plan
    total and hands procurement its scheduling task. Three layers keep the
    cost center from ever being re-initialised:

      1. guard read: an already-approved party is a no-op, a locked plan
         never re-enters activation;
      2. version columns on Case / ExecutionPlan: a concurrent activation
         loses the compare-and-swap and gets ConcurrencyConflictError;
      3. UNIQUE(cost_centers.case_id): the store refuses a second row.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from fitout.core.exceptions import (
    ConcurrencyConflictError,
    PermissionDeniedError,
    StateTransitionError,
    ValidationError,
)
from fitout.models import db
from fitout.models.case import Case, CostCenter
from fitout.models.execution import (
    ApprovalParty,
    ApprovalState,
    ExecutionPlan,
    PlanStatus,
    validate_approval_transition,
)
from fitout.models.plan_schedule import (
    PlanDay,
    PlanPhase,
    ScheduleError,
    parse_schedule,
    schedule_total,
)
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.case_service import transition_case
from fitout.services.helpers.guards import ADMIN_ROLES, require_role, utcnow
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import money

logger = logging.getLogger(__name__)

PREPARER_ROLES = (Role.EXECUTION_TEAM,)

PARTY_ROLES = {
    ApprovalParty.PREPARER: PREPARER_ROLES,
    ApprovalParty.ADMIN: ADMIN_ROLES,
    ApprovalParty.CLIENT: (Role.CLIENT,),
}

EDITABLE_CASE_STATUSES = ("waiting_for_planning", "planning_in_progress")


def _schedule_span(items):
    starts, ends = [], []
    for item in items:
        if isinstance(item, PlanDay):
            starts.append(item.date)
            ends.append(item.date)
        elif isinstance(item, PlanPhase):
            starts.append(item.start_date)
            ends.append(item.end_date)
        else:
            raise TypeError(f"unknown schedule item {type(item).__name__}")
    return min(starts), max(ends)


def _get_plan(case: Case) -> ExecutionPlan:
    plan = case.execution_plan
    if plan is None:
        raise StateTransitionError(
            "No execution plan has been submitted for this case",
            current_state=case.status,
            code="PLAN_NOT_SUBMITTED",
        )
    return plan


def _require_preparer(plan: ExecutionPlan, actor: Actor, action: str) -> None:
    if plan.prepared_by and plan.prepared_by != actor.id:
        raise PermissionDeniedError(
            f"Only the plan's preparer ({plan.prepared_by}) may {action}",
            role=actor.role.value,
            code="PREPARER_MISMATCH",
        )


def _record_approval(plan: ExecutionPlan, party: ApprovalParty, actor: Actor, when) -> None:
    """Move one party to approved or raise StateTransitionError."""
    current = plan.state_of(party)
    if not validate_approval_transition(current, ApprovalState.APPROVED.value):
        raise StateTransitionError(
            f"{party.value} approval cannot move from '{current}' to 'approved'",
            current_state=current,
            code="APPROVAL_STATE_INVALID",
        )
    plan.mark_approved(party, actor.id, when)


def _log(case: Case, plan: ExecutionPlan, message: str, action: str, actor: Actor) -> None:
    logger.info(
        message,
        extra={"case_id": case.id, "entity_type": "execution_plan",
               "entity_id": plan.id if plan else None, "action": action, "actor_id": actor.id},
    )


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_plan(case_id: int, kind: str, items, actor: Actor, notes: str | None = None) -> dict:
    """Write (or rewrite) the draft plan while the preparer has not signed."""
    require_role(actor, PREPARER_ROLES, "submit an execution plan")
    case = get_or_raise(Case, case_id)
    if not case.is_project:
        raise StateTransitionError(
            "Case must be converted to a project before planning",
            current_state=case.status,
            code="CASE_NOT_PROJECT",
        )
    plan = case.execution_plan
    if plan is not None and plan.is_approved(ApprovalParty.PREPARER):
        raise StateTransitionError(
            "Plan is frozen once the preparer has signed",
            current_state=plan.status,
            code="PLAN_FROZEN",
        )
    if plan is not None:
        _require_preparer(plan, actor, "revise it")
    if case.status not in EDITABLE_CASE_STATUSES:
        raise StateTransitionError(
            "Case is not in a planning state",
            current_state=case.status,
            code="CASE_STATE_INVALID",
        )
    try:
        parsed = parse_schedule(kind, items)
    except ScheduleError as exc:
        raise ValidationError(str(exc), code="SCHEDULE_INVALID", details={"field": kind}) from exc

    start, end = _schedule_span(parsed)
    total = money(schedule_total(parsed))
    now = utcnow()
    first_submission = plan is None

    with atomic_batch(case):
        if plan is None:
            plan = ExecutionPlan(case_id=case.id, prepared_by=actor.id)
            case.execution_plan = plan
        plan.schedule_kind = kind
        plan.schedule = [item.to_dict() for item in parsed]
        plan.start_date = start
        plan.end_date = end
        plan.total_budget = total
        plan.notes = notes
        plan.status = PlanStatus.DRAFT.value
        plan.submitted_at = now
        transition_case(case, "planning_in_progress")
        db.session.flush()

        if first_submission or not activity_service.has_open_task(case.id, "execution_plan_approval"):
            activity_service.create_task(
                case_id=case.id,
                task_type="execution_plan_approval",
                title=f"Approve execution plan for {case.code}",
                assigned_role=Role.SUPER_ADMIN.value,
                entity_type="execution_plan",
                entity_id=plan.id,
                actor=actor,
            )
        activity_service.write_activity(
            case_id=case.id,
            action="execution_plan.submit",
            message=f"Execution plan {'submitted' if first_submission else 'revised'} "
                    f"({len(parsed)} {kind}, budget {total})",
            actor=actor,
            entity_type="execution_plan",
            entity_id=plan.id,
            details={"total_budget": str(total)},
            when=now,
        )

    _log(case, plan, "Execution plan submitted", "execution_plan.submit", actor)
    return plan.to_dict()


def approve_plan(case_id: int, party, actor: Actor) -> dict:
    """Flip one party's approval; activate when all three have signed.

    Approving an already-approved party is a no-op returning the current plan,
    so a retried request can never re-run activation.
    """
    try:
        party = ApprovalParty(party)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown approval party '{party}'", code="INVALID_PARTY", details={"field": "party"},
        ) from exc
    require_role(actor, PARTY_ROLES[party], f"give the {party.value} approval")

    case = get_or_raise(Case, case_id)
    if party == ApprovalParty.CLIENT and case.client_id and case.client_id != actor.id:
        raise PermissionDeniedError(
            "Only this case's client may give the client approval",
            role=actor.role.value,
            code="CLIENT_MISMATCH",
        )
    plan = _get_plan(case)
    if party == ApprovalParty.PREPARER:
        _require_preparer(plan, actor, "give the preparer approval")

    if plan.is_approved(party):
        _log(case, plan, "Approval already recorded; no-op", f"execution_plan.approve.{party.value}", actor)
        return plan.to_dict()

    if party != ApprovalParty.PREPARER and not plan.is_approved(ApprovalParty.PREPARER):
        raise StateTransitionError(
            "The preparer must sign the plan first",
            current_state=plan.status,
            code="PREPARER_APPROVAL_REQUIRED",
        )

    now = utcnow()
    plan_id = plan.id
    activated = False
    try:
        with atomic_batch(plan):
            _record_approval(plan, party, actor, now)
            if party == ApprovalParty.PREPARER:
                plan.status = PlanStatus.AWAITING_APPROVAL.value
                transition_case(case, "planning_submitted")
            activity_service.write_activity(
                case_id=case.id,
                action=f"execution_plan.approve.{party.value}",
                message=f"Execution plan approved by {party.value} ({actor.label})",
                actor=actor,
                entity_type="execution_plan",
                entity_id=plan.id,
                when=now,
            )
            if plan.activation_ready and not plan.locked:
                _activate(case, plan, actor, now)
                activated = True
    except IntegrityError as exc:
        raise ConcurrencyConflictError("ExecutionPlan", plan_id) from exc

    _log(case, plan, "Execution plan approval recorded", f"execution_plan.approve.{party.value}", actor)
    if activated:
        _log(case, plan, "Execution activated; cost center initialised", "execution_plan.activate", actor)
    return plan.to_dict()


def _activate(case: Case, plan: ExecutionPlan, actor: Actor, now) -> None:
    """Activation fan-out. Runs inside the caller's atomic batch."""
    if case.cost_center is not None:
        raise StateTransitionError(
            "Cost center already initialised for this case",
            current_state=case.status,
            code="COST_CENTER_EXISTS",
        )
    total = money(plan.computed_total())
    transition_case(case, "execution_active")
    plan.locked = True
    plan.locked_at = now
    plan.status = PlanStatus.LOCKED.value
    plan.total_budget = total
    case.cost_center = CostCenter(
        total_budget=total,
        spent_amount=0,
        remaining_amount=total,
        materials=0,
        salaries=0,
        expenses=0,
        initialized_by=actor.id,
        initialized_at=now,
    )
    db.session.flush()
    activity_service.complete_open_tasks(case.id, "execution_plan_approval", actor, now)
    activity_service.create_task(
        case_id=case.id,
        task_type="procurement_scheduling",
        title=f"Schedule material procurement for {case.code}",
        assigned_role=Role.PROCUREMENT.value,
        entity_type="execution_plan",
        entity_id=plan.id,
        actor=actor,
    )
    activity_service.write_activity(
        case_id=case.id,
        action="execution_plan.activate",
        message=f"Execution activated; cost center funded with {total}",
        actor=actor,
        entity_type="execution_plan",
        entity_id=plan.id,
        details={"total_budget": str(total)},
        when=now,
    )


def reject_plan(case_id: int, actor: Actor, reason: str | None = None) -> dict:
    """Discard the whole plan and all approvals; the case returns to waiting."""
    require_role(actor, ADMIN_ROLES, "reject an execution plan")
    case = get_or_raise(Case, case_id)
    plan = _get_plan(case)
    if plan.locked:
        raise StateTransitionError(
            "An activated plan cannot be rejected", current_state=plan.status, code="PLAN_LOCKED",
        )
    plan_id = plan.id
    reason = (reason or "").strip() or None
    with atomic_batch(case):
        case.execution_plan = None
        transition_case(case, "waiting_for_planning")
        activity_service.write_activity(
            case_id=case.id,
            action="execution_plan.reject",
            message="Execution plan rejected" + (f": {reason}" if reason else ""),
            actor=actor,
            entity_type="execution_plan",
            entity_id=plan_id,
            details={"reason": reason} if reason else None,
        )
    _log(case, None, "Execution plan rejected", "execution_plan.reject", actor)
    return case.to_dict()


# ── Read side ─────────────────────────────────────────────────────────────────


def get_plan(case_id: int) -> dict:
    case = get_or_raise(Case, case_id)
    return _get_plan(case).to_dict()
