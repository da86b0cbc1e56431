"""
Case lifecycle service.

Owns the coarse Case status machine outside the execution-plan cascade:
lead creation, conversion into a project once a quotation is approved,
BOQ editing, and completion.

    lead ──convert_to_project──▶ waiting_for_planning
    execution_active ──complete_case──▶ completed

Planning and activation transitions live in execution_plan_service.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from fitout.core.exceptions import ConflictError, StateTransitionError, ValidationError
from fitout.models import db
from fitout.models.case import CASE_STATUSES, Boq, Case, validate_case_transition
from fitout.models.quotation import Quotation
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.helpers.guards import require_role, require_text, utcnow
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import to_decimal

logger = logging.getLogger(__name__)

CASE_CREATOR_ROLES = (Role.SALES, Role.QUOTATION_TEAM, Role.SUPER_ADMIN)
BOQ_EDITOR_ROLES = (Role.SALES, Role.QUOTATION_TEAM, Role.SUPER_ADMIN)


def transition_case(case: Case, new_status: str) -> None:
    """Move ``case`` to ``new_status`` or raise StateTransitionError."""
    if not validate_case_transition(case.status, new_status):
        raise StateTransitionError(
            f"Case cannot move from '{case.status}' to '{new_status}'",
            current_state=case.status,
            code="CASE_STATE_INVALID",
        )
    case.status = new_status


def _next_case_code() -> str:
    max_id = db.session.execute(select(func.max(Case.id))).scalar() or 0
    return f"CASE-{max_id + 1:03d}"


def create_case(
    title: str,
    actor: Actor,
    *,
    client_name: str | None = None,
    client_id: str | None = None,
    site_address: str | None = None,
    estimated_budget=None,
) -> dict:
    """Create a lead."""
    require_role(actor, CASE_CREATOR_ROLES, "create a case")
    title = require_text(title, "title")
    budget = None
    if estimated_budget not in (None, ""):
        try:
            budget = to_decimal(estimated_budget, "estimated_budget")
        except ValueError as exc:
            raise ValidationError(str(exc), code="INVALID_AMOUNT") from exc

    case = Case(
        code=_next_case_code(),
        title=title,
        client_name=client_name,
        client_id=client_id,
        site_address=site_address,
        estimated_budget=budget,
        status="lead",
        is_project=False,
        created_by=actor.id,
    )
    try:
        with atomic_batch(case):
            db.session.add(case)
            db.session.flush()
            activity_service.write_activity(
                case_id=case.id,
                action="case.create",
                message=f"Case {case.code} created by {actor.label}",
                actor=actor,
                entity_type="case",
                entity_id=case.id,
            )
    except IntegrityError as exc:
        raise ConflictError("Case", "code", case.code) from exc

    logger.info(
        "Case created",
        extra={"case_id": case.id, "entity_type": "case", "entity_id": case.id,
               "action": "case.create", "actor_id": actor.id},
    )
    return case.to_dict()


def get_case(case_id: int, include_children: bool = True) -> dict:
    return get_or_raise(Case, case_id).to_dict(include_children=include_children)


def list_cases(status: str | None = None) -> list[dict]:
    stmt = select(Case)
    if status:
        if status not in CASE_STATUSES:
            raise ValidationError(f"Unknown case status '{status}'", details={"field": "status"})
        stmt = stmt.where(Case.status == status)
    return [c.to_dict() for c in db.session.execute(stmt.order_by(Case.id)).scalars()]


def convert_to_project(case_id: int, actor: Actor) -> dict:
    """Turn a won lead into a project ready for execution planning.

    Requires at least one approved quotation on the case.
    """
    require_role(actor, (Role.SALES, Role.SUPER_ADMIN), "convert a case to a project")
    case = get_or_raise(Case, case_id)
    if case.is_project:
        raise StateTransitionError(
            "Case is already a project", current_state=case.status, code="CASE_ALREADY_PROJECT",
        )
    approved = db.session.execute(
        select(func.count(Quotation.id)).where(
            Quotation.case_id == case_id, Quotation.audit_status == "approved",
        )
    ).scalar()
    if not approved:
        raise StateTransitionError(
            "An approved quotation is required before conversion",
            current_state=case.status,
            code="QUOTATION_NOT_APPROVED",
        )

    with atomic_batch(case):
        transition_case(case, "waiting_for_planning")
        case.is_project = True
        activity_service.write_activity(
            case_id=case.id,
            action="case.convert",
            message=f"{case.code} converted to a project; waiting for execution planning",
            actor=actor,
            entity_type="case",
            entity_id=case.id,
        )

    logger.info(
        "Case converted to project",
        extra={"case_id": case.id, "action": "case.convert", "actor_id": actor.id},
    )
    return case.to_dict()


def complete_case(case_id: int, actor: Actor) -> dict:
    require_role(actor, (Role.EXECUTION_TEAM, Role.SUPER_ADMIN), "complete a case")
    case = get_or_raise(Case, case_id)
    if case.status != "execution_active":
        raise StateTransitionError(
            "Only an active project can be completed",
            current_state=case.status,
            code="CASE_NOT_ACTIVE",
        )
    now = utcnow()
    with atomic_batch(case):
        transition_case(case, "completed")
        case.completed_at = now
        activity_service.write_activity(
            case_id=case.id,
            action="case.complete",
            message=f"{case.code} marked completed by {actor.label}",
            actor=actor,
            entity_type="case",
            entity_id=case.id,
            when=now,
        )
    logger.info("Case completed", extra={"case_id": case.id, "action": "case.complete", "actor_id": actor.id})
    return case.to_dict()


# ── BOQ ──────────────────────────────────────────────────────────────────────


def _validate_boq_lines(lines) -> list[dict]:
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list", details={"field": "lines"})
    cleaned = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"lines[{idx}] must be an object", details={"field": "lines"})
        try:
            quantity = to_decimal(line.get("quantity"), f"lines[{idx}].quantity")
            rate = to_decimal(line.get("rate") or 0, f"lines[{idx}].rate")
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "lines"}) from exc
        cleaned.append({
            "item_id": line.get("item_id"),
            "description": line.get("description") or "",
            "unit": line.get("unit"),
            "quantity": float(quantity),
            "rate": float(rate),
        })
    return cleaned


def create_boq(case_id: int, lines, actor: Actor, title: str | None = None) -> dict:
    require_role(actor, BOQ_EDITOR_ROLES, "create a BOQ")
    case = get_or_raise(Case, case_id)
    boq = Boq(
        case_id=case.id,
        title=(title or "").strip() or "BOQ",
        lines=_validate_boq_lines(lines),
        created_by=actor.id,
    )
    with atomic_batch(boq):
        db.session.add(boq)
        db.session.flush()
        activity_service.write_activity(
            case_id=case.id,
            action="boq.create",
            message=f"BOQ '{boq.title}' created with {len(boq.lines)} line(s)",
            actor=actor,
            entity_type="boq",
            entity_id=boq.id,
        )
    return boq.to_dict()


def update_boq(boq_id: int, lines, actor: Actor) -> dict:
    """Replace BOQ lines. Refused once an approved quotation froze the BOQ."""
    require_role(actor, BOQ_EDITOR_ROLES, "edit a BOQ")
    boq = get_or_raise(Boq, boq_id)
    if boq.locked:
        raise StateTransitionError(
            "BOQ is locked by an approved quotation",
            current_state="locked",
            code="BOQ_LOCKED",
            details={"quotation_id": boq.referenced_by_quotation_id},
        )
    cleaned = _validate_boq_lines(lines)
    with atomic_batch(boq):
        boq.lines = cleaned
        activity_service.write_activity(
            case_id=boq.case_id,
            action="boq.update",
            message=f"BOQ '{boq.title}' updated ({len(cleaned)} line(s))",
            actor=actor,
            entity_type="boq",
            entity_id=boq.id,
        )
    return boq.to_dict()
