"""
Procurement Scheduling Ledger.

Material lines of a locked execution plan become ProcurementPlan rows:

    planned ──mark_delivered (procurement)──▶ delivered ──mark_invoiced (accounts)──▶ invoiced

``list_unscheduled`` is a generator recomputed from the current plan and the
current ledger on every call; nothing is cached between calls. A material line
is unscheduled while no ledger row on the case shares its dedup key
(catalog_item_id, quantity, required_on). ``create_plan`` refuses a duplicate
key with ConflictError, and the UNIQUE constraint backs that up when two
sessions race.

Quantities are not reconciled as a hard rule: scheduling more than the plan
requires is allowed and only logged as a warning. ``quantity_reconciliation``
reports the per-item balance.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from fitout.core.exceptions import ConflictError, StateTransitionError, ValidationError
from fitout.models import db
from fitout.models.case import Case
from fitout.models.plan_schedule import iter_materials
from fitout.models.procurement import (
    PROCUREMENT_STATUSES,
    ProcurementPlan,
    make_dedup_key,
    validate_procurement_transition,
)
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.helpers.guards import (
    positive_quantity,
    require_role,
    require_text,
    required_date,
    utcnow,
)
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import as_float

logger = logging.getLogger(__name__)

SCHEDULABLE_CASE_STATUSES = ("execution_active",)


def _locked_schedule(case: Case):
    plan = case.execution_plan
    if plan is None or not plan.locked:
        return ()
    return plan.parsed_schedule()


def _existing_keys(case_id: int) -> set:
    rows = db.session.execute(
        select(ProcurementPlan.catalog_item_id, ProcurementPlan.quantity, ProcurementPlan.required_on)
        .where(ProcurementPlan.case_id == case_id)
    ).all()
    return {make_dedup_key(*row) for row in rows}


def unscheduled_materials(schedule_items, existing_keys):
    """Yield material lines whose dedup key is not in ``existing_keys``.

    Pure: depends only on its arguments. Identical lines in the plan are
    yielded once, since one ledger row covers the key.
    """
    seen = set(existing_keys)
    for item, material in iter_materials(schedule_items):
        key = make_dedup_key(material.catalog_item_id, material.quantity, material.required_on)
        if key in seen:
            continue
        seen.add(key)
        yield {
            "catalog_item_id": material.catalog_item_id,
            "item_name": material.item_name,
            "quantity": float(material.quantity),
            "required_on": material.required_on.isoformat(),
            "work_description": item.label,
        }


def list_unscheduled(case_id: int):
    """Lazily list plan material lines not yet in the ledger.

    Reads the plan and ledger when iteration starts; call again for a fresh
    view. Cases without a locked plan yield nothing.
    """
    case = get_or_raise(Case, case_id)
    schedule = _locked_schedule(case)
    if not schedule:
        return
    yield from unscheduled_materials(schedule, _existing_keys(case.id))


def _required_by_item(case: Case) -> "OrderedDict[str, Decimal]":
    required = OrderedDict()
    for _, material in iter_materials(_locked_schedule(case)):
        required[material.catalog_item_id] = (
            required.get(material.catalog_item_id, Decimal("0")) + material.quantity
        )
    return required


def _scheduled_by_item(case_id: int) -> dict:
    rows = db.session.execute(
        select(ProcurementPlan.catalog_item_id, func.sum(ProcurementPlan.quantity))
        .where(ProcurementPlan.case_id == case_id)
        .group_by(ProcurementPlan.catalog_item_id)
    ).all()
    return {item_id: Decimal(str(total or 0)) for item_id, total in rows}


def quantity_reconciliation(case_id: int) -> list[dict]:
    """Required vs scheduled quantity per catalog item: under | balanced | over."""
    case = get_or_raise(Case, case_id)
    required = _required_by_item(case)
    scheduled = _scheduled_by_item(case.id)
    report = []
    for item_id in list(required) + [i for i in scheduled if i not in required]:
        need = required.get(item_id, Decimal("0"))
        have = scheduled.get(item_id, Decimal("0"))
        if have < need:
            status = "under"
        elif have == need:
            status = "balanced"
        else:
            status = "over"
        report.append({
            "catalog_item_id": item_id,
            "required_quantity": float(need),
            "scheduled_quantity": float(have),
            "difference": float(have - need),
            "status": status,
        })
    return report


# ── Transitions ──────────────────────────────────────────────────────────────


def create_plan(
    case_id: int,
    catalog_item_id: str,
    quantity,
    required_on,
    vendor_id: str,
    expected_delivery_date,
    actor: Actor,
    *,
    vendor_name: str | None = None,
    item_name: str | None = None,
    work_description: str | None = None,
) -> dict:
    """Append a ``planned`` ledger row for one material line."""
    require_role(actor, (Role.PROCUREMENT,), "schedule procurement")
    catalog_item_id = require_text(catalog_item_id, "catalog_item_id")
    vendor_id = require_text(vendor_id, "vendor_id")
    qty = positive_quantity(quantity)
    required_date_ = required_date(required_on, "required_on")
    delivery_date = required_date(expected_delivery_date, "expected_delivery_date")

    case = get_or_raise(Case, case_id)
    if case.status not in SCHEDULABLE_CASE_STATUSES or not _locked_schedule(case):
        raise StateTransitionError(
            "Procurement can only be scheduled for an active case with a locked plan",
            current_state=case.status,
            code="CASE_NOT_ACTIVE",
        )
    key = make_dedup_key(catalog_item_id, qty, required_date_)
    key_label = f"{catalog_item_id}-{key[1]:f}-{required_date_.isoformat()}"
    if key in _existing_keys(case.id):
        raise ConflictError("ProcurementPlan", "dedup_key", key_label)

    plan = ProcurementPlan(
        case_id=case.id,
        catalog_item_id=catalog_item_id,
        item_name=item_name,
        quantity=qty,
        required_on=required_date_,
        work_description=work_description,
        vendor_id=vendor_id,
        vendor_name=vendor_name,
        expected_delivery_date=delivery_date,
        status="planned",
        created_by=actor.id,
    )
    required = _required_by_item(case).get(catalog_item_id, Decimal("0"))
    already = _scheduled_by_item(case.id).get(catalog_item_id, Decimal("0"))
    try:
        with atomic_batch(plan):
            db.session.add(plan)
            db.session.flush()
            activity_service.write_activity(
                case_id=case.id,
                action="procurement.plan",
                message=f"Procurement of {qty} x {item_name or catalog_item_id} "
                        f"scheduled with vendor {vendor_id} for {delivery_date.isoformat()}",
                actor=actor,
                entity_type="procurement_plan",
                entity_id=plan.id,
                details={"vendor_id": vendor_id, "dedup_key": key_label},
            )
    except IntegrityError as exc:
        raise ConflictError("ProcurementPlan", "dedup_key", key_label) from exc

    if already + qty > required:
        logger.warning(
            "Catalog item %s over-scheduled: %s scheduled vs %s required",
            catalog_item_id, already + qty, required,
            extra={"case_id": case.id, "entity_type": "procurement_plan", "entity_id": plan.id,
                   "action": "procurement.plan", "actor_id": actor.id},
        )
    logger.info(
        "Procurement plan created",
        extra={"case_id": case.id, "entity_type": "procurement_plan", "entity_id": plan.id,
               "action": "procurement.plan", "actor_id": actor.id},
    )
    return plan.to_dict()


def _require_transition(plan: ProcurementPlan, new_status: str) -> None:
    if validate_procurement_transition(plan.status, new_status):
        return
    if plan.status == "invoiced":
        code = "ALREADY_INVOICED"
    elif plan.status == "delivered":
        code = "ALREADY_DELIVERED"
    else:
        code = "NOT_DELIVERED"
    raise StateTransitionError(
        f"Procurement plan {plan.id} cannot move from '{plan.status}' to '{new_status}'",
        current_state=plan.status,
        code=code,
    )


def mark_delivered(plan_id: int, actor: Actor) -> dict:
    require_role(actor, (Role.PROCUREMENT,), "mark a delivery")
    plan = get_or_raise(ProcurementPlan, plan_id)
    _require_transition(plan, "delivered")
    now = utcnow()
    with atomic_batch(plan):
        plan.status = "delivered"
        plan.delivered_at = now
        plan.delivered_by = actor.id
        activity_service.write_activity(
            case_id=plan.case_id,
            action="procurement.deliver",
            message=f"{plan.item_name or plan.catalog_item_id} delivered by vendor {plan.vendor_id}",
            actor=actor,
            entity_type="procurement_plan",
            entity_id=plan.id,
            when=now,
        )
    logger.info(
        "Procurement delivered",
        extra={"case_id": plan.case_id, "entity_type": "procurement_plan", "entity_id": plan.id,
               "action": "procurement.deliver", "actor_id": actor.id},
    )
    return plan.to_dict()


def mark_invoiced(plan_id: int, purchase_invoice_id: str, actor: Actor) -> dict:
    require_role(actor, (Role.ACCOUNTS,), "mark a delivery invoiced")
    invoice_id = require_text(purchase_invoice_id, "purchase_invoice_id", code="INVOICE_ID_REQUIRED")
    plan = get_or_raise(ProcurementPlan, plan_id)
    _require_transition(plan, "invoiced")
    now = utcnow()
    with atomic_batch(plan):
        plan.status = "invoiced"
        plan.purchase_invoice_id = invoice_id
        plan.invoiced_at = now
        plan.invoiced_by = actor.id
        activity_service.write_activity(
            case_id=plan.case_id,
            action="procurement.invoice",
            message=f"{plan.item_name or plan.catalog_item_id} invoiced ({invoice_id})",
            actor=actor,
            entity_type="procurement_plan",
            entity_id=plan.id,
            details={"purchase_invoice_id": invoice_id},
            when=now,
        )
    logger.info(
        "Procurement invoiced",
        extra={"case_id": plan.case_id, "entity_type": "procurement_plan", "entity_id": plan.id,
               "action": "procurement.invoice", "actor_id": actor.id},
    )
    return plan.to_dict()


# ── Read side ─────────────────────────────────────────────────────────────────


def _filter_status(stmt, status):
    if not status:
        return stmt
    if status not in PROCUREMENT_STATUSES:
        raise ValidationError(f"Unknown procurement status '{status}'", details={"field": "status"})
    return stmt.where(ProcurementPlan.status == status)


def list_plans(case_id: int, status: str | None = None) -> list[dict]:
    stmt = _filter_status(select(ProcurementPlan).where(ProcurementPlan.case_id == case_id), status)
    stmt = stmt.order_by(ProcurementPlan.required_on, ProcurementPlan.id)
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]


def list_plans_for_vendor(vendor_id: str, status: str | None = None) -> list[dict]:
    stmt = _filter_status(select(ProcurementPlan).where(ProcurementPlan.vendor_id == vendor_id), status)
    stmt = stmt.order_by(ProcurementPlan.expected_delivery_date, ProcurementPlan.id)
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]


def list_delivered_pending_invoice(case_id: int | None = None) -> list[dict]:
    """Accounts' queue: delivered, not yet invoiced."""
    stmt = select(ProcurementPlan).where(ProcurementPlan.status == "delivered")
    if case_id is not None:
        stmt = stmt.where(ProcurementPlan.case_id == case_id)
    stmt = stmt.order_by(ProcurementPlan.delivered_at, ProcurementPlan.id)
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]


def ledger_summary(case_id: int) -> dict:
    """Counts and quantity per status for dashboards."""
    rows = db.session.execute(
        select(ProcurementPlan.status, func.count(ProcurementPlan.id), func.sum(ProcurementPlan.quantity))
        .where(ProcurementPlan.case_id == case_id)
        .group_by(ProcurementPlan.status)
    ).all()
    summary = {s: {"count": 0, "quantity": 0.0} for s in ("planned", "delivered", "invoiced")}
    for status, count, qty in rows:
        summary[status] = {"count": count, "quantity": as_float(qty) or 0.0}
    return summary
