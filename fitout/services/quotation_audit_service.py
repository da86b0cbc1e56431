"""
Quotation Audit state machine.

    pending ──approve──▶ approved      (terminal)
    pending ──reject───▶ rejected      (terminal)

Approval is one atomic batch:
    1. audit_status = approved, auditor + timestamp stamped
    2. client-visible quotation document attached to the case
    3. open procurement_audit task(s) completed, vendor_bidding task created
    4. originating BOQ (if any) locked, the irrevocability boundary
    5. activity line

A second approve (or reject) of the same quotation fails the state guard and
never re-runs the fan-out. A rejected quotation is kept as history; the
preparer submits a revision as a new quotation.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import select

from fitout.core.exceptions import StateTransitionError, ValidationError
from fitout.models import db
from fitout.models.case import Boq, Case
from fitout.models.quotation import AUDIT_STATUSES, Quotation, QuotationItem, validate_audit_transition
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.helpers.guards import AUDITOR_ROLES, require_role, require_text, utcnow
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import money, to_decimal, to_quantity

logger = logging.getLogger(__name__)

PREPARER_ROLES = (Role.QUOTATION_TEAM,)
TAX_RATE_STEP = Decimal("0.0001")


# ── Validation ───────────────────────────────────────────────────────────────


def _validate_items(items) -> list[dict]:
    """Normalise raw item payloads; every rejection names the failed rule."""
    if not isinstance(items, list) or not items:
        raise ValidationError(
            "A quotation needs at least one item", code="QUOTATION_EMPTY", details={"field": "items"},
        )
    cleaned = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object", details={"field": "items"})
        item_id = str(raw.get("item_id") or "").strip()
        if not item_id:
            raise ValidationError(
                f"items[{idx}].item_id is required",
                code="ERR_VALIDATION_REQUIRED",
                details={"field": "items", "index": idx},
            )
        try:
            # column scales: quantity 3 dp, price and discount 2 dp
            quantity = to_quantity(raw.get("quantity"), f"items[{idx}].quantity")
            unit_price = money(raw.get("unit_price"), f"items[{idx}].unit_price")
            discount = money(raw.get("discount_percent") or 0, f"items[{idx}].discount_percent")
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "items", "index": idx}) from exc
        if quantity <= 0:
            raise ValidationError(
                f"items[{idx}].quantity must be > 0",
                code="INVALID_QUANTITY",
                details={"field": "items", "index": idx},
            )
        if unit_price <= 0:
            raise ValidationError(
                f"items[{idx}].unit_price must be > 0",
                code="INVALID_RATE",
                details={"field": "items", "index": idx},
            )
        if discount < 0 or discount > 100:
            raise ValidationError(
                f"items[{idx}].discount_percent must be between 0 and 100",
                code="INVALID_DISCOUNT",
                details={"field": "items", "index": idx},
            )
        cleaned.append({
            "item_id": item_id,
            "name": raw.get("name"),
            "unit": raw.get("unit"),
            "quantity": quantity,
            "unit_price": unit_price,
            "discount_percent": discount,
        })
    return cleaned


def _build_items(cleaned: list[dict]) -> list[QuotationItem]:
    return [QuotationItem(position=pos, **fields) for pos, fields in enumerate(cleaned)]


def _refresh_totals(quotation: Quotation) -> None:
    totals = quotation.apply_totals()
    threshold = Decimal(str(current_app.config.get("DISCOUNT_APPROVAL_THRESHOLD_PCT", 5)))
    subtotal = totals["subtotal"]
    share = (totals["discount_amount"] / subtotal * 100) if subtotal else Decimal("0")
    quotation.requires_discount_approval = share > threshold


def _require_pending(quotation: Quotation, target: str) -> None:
    if not validate_audit_transition(quotation.audit_status, target):
        raise StateTransitionError(
            f"Quotation already {quotation.audit_status}",
            current_state=quotation.audit_status,
            code="QUOTATION_ALREADY_AUDITED",
        )


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_quotation(
    case_id: int,
    items,
    actor: Actor,
    *,
    boq_id: int | None = None,
    title: str | None = None,
    pdf_url: str | None = None,
    notes: str | None = None,
    tax_rate=None,
) -> dict:
    """Create a quotation in ``pending`` and hand it to procurement audit."""
    require_role(actor, PREPARER_ROLES, "submit a quotation")
    case = get_or_raise(Case, case_id)
    if case.status == "completed":
        raise StateTransitionError(
            "Case is completed", current_state=case.status, code="CASE_COMPLETED",
        )
    if boq_id is not None:
        get_or_raise(Boq, boq_id, case_id=case_id)

    cleaned = _validate_items(items)
    if tax_rate is None:
        tax_rate = current_app.config.get("DEFAULT_TAX_RATE", "0.18")
    try:
        rate = to_decimal(tax_rate, "tax_rate")
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "tax_rate"}) from exc
    if rate < 0 or rate >= 1:
        raise ValidationError("tax_rate must be a fraction in [0, 1)", details={"field": "tax_rate"})
    rate = rate.quantize(TAX_RATE_STEP, rounding=ROUND_HALF_UP)

    quotation = Quotation(
        case_id=case.id,
        boq_id=boq_id,
        title=title,
        pdf_url=pdf_url,
        notes=notes,
        tax_rate=rate,
        audit_status="pending",
        prepared_by=actor.id,
    )
    quotation.items = _build_items(cleaned)
    _refresh_totals(quotation)

    with atomic_batch(quotation):
        db.session.add(quotation)
        db.session.flush()
        activity_service.create_task(
            case_id=case.id,
            task_type="procurement_audit",
            title=f"Audit quotation #{quotation.id} ({quotation.grand_total})",
            assigned_role=Role.PROCUREMENT.value,
            entity_type="quotation",
            entity_id=quotation.id,
            actor=actor,
        )
        activity_service.write_activity(
            case_id=case.id,
            action="quotation.submit",
            message=f"Quotation #{quotation.id} submitted for audit, total {quotation.grand_total}",
            actor=actor,
            entity_type="quotation",
            entity_id=quotation.id,
            details={"grand_total": str(quotation.grand_total)},
        )

    logger.info(
        "Quotation submitted",
        extra={"case_id": case.id, "entity_type": "quotation", "entity_id": quotation.id,
               "action": "quotation.submit", "actor_id": actor.id},
    )
    return quotation.to_dict()


def update_items(quotation_id: int, items, actor: Actor) -> dict:
    """Replace the item list of a pending quotation and recompute totals."""
    require_role(actor, PREPARER_ROLES, "edit a quotation")
    quotation = get_or_raise(Quotation, quotation_id)
    if quotation.audit_status != "pending":
        raise StateTransitionError(
            "Only a pending quotation can be edited",
            current_state=quotation.audit_status,
            code="QUOTATION_ALREADY_AUDITED",
        )
    cleaned = _validate_items(items)

    with atomic_batch(quotation):
        quotation.items = _build_items(cleaned)
        _refresh_totals(quotation)
        quotation.updated_at = utcnow()
        activity_service.write_activity(
            case_id=quotation.case_id,
            action="quotation.update",
            message=f"Quotation #{quotation.id} items updated, total {quotation.grand_total}",
            actor=actor,
            entity_type="quotation",
            entity_id=quotation.id,
        )

    logger.info(
        "Quotation items updated",
        extra={"case_id": quotation.case_id, "entity_type": "quotation",
               "entity_id": quotation.id, "action": "quotation.update", "actor_id": actor.id},
    )
    return quotation.to_dict()


def approve_quotation(quotation_id: int, actor: Actor) -> dict:
    require_role(actor, AUDITOR_ROLES, "approve a quotation")
    quotation = get_or_raise(Quotation, quotation_id)
    _require_pending(quotation, "approved")
    if not quotation.items:
        raise ValidationError("A quotation needs at least one item", code="QUOTATION_EMPTY")

    now = utcnow()
    with atomic_batch(quotation):
        quotation.audit_status = "approved"
        quotation.audited_by = actor.id
        quotation.audited_at = now

        activity_service.attach_document(
            case_id=quotation.case_id,
            name=quotation.title or f"Quotation #{quotation.id}",
            actor=actor,
            doc_type="quotation",
            file_url=quotation.pdf_url,
            quotation_id=quotation.id,
            amount=quotation.grand_total,
            visible_to_client=True,
            approval_status="approved",
            when=now,
        )
        activity_service.complete_open_tasks(quotation.case_id, "procurement_audit", actor, now)
        activity_service.create_task(
            case_id=quotation.case_id,
            task_type="vendor_bidding",
            title=f"Run vendor bidding for quotation #{quotation.id}",
            assigned_role=Role.PROCUREMENT.value,
            entity_type="quotation",
            entity_id=quotation.id,
            actor=actor,
        )
        if quotation.boq_id is not None:
            boq = db.session.get(Boq, quotation.boq_id)
            if boq is not None and not boq.locked:
                boq.locked = True
                boq.referenced_by_quotation_id = quotation.id
        activity_service.write_activity(
            case_id=quotation.case_id,
            action="quotation.approve",
            message=f"Quotation #{quotation.id} approved by {actor.label}",
            actor=actor,
            entity_type="quotation",
            entity_id=quotation.id,
            details={"grand_total": str(quotation.grand_total)},
            when=now,
        )

    logger.info(
        "Quotation approved",
        extra={"case_id": quotation.case_id, "entity_type": "quotation",
               "entity_id": quotation.id, "action": "quotation.approve", "actor_id": actor.id},
    )
    return quotation.to_dict()


def reject_quotation(quotation_id: int, actor: Actor, reason: str) -> dict:
    """Reject with a mandatory reason. The audit task is left untouched."""
    require_role(actor, AUDITOR_ROLES, "reject a quotation")
    reason = require_text(reason, "reason", code="REJECTION_REASON_REQUIRED")
    quotation = get_or_raise(Quotation, quotation_id)
    _require_pending(quotation, "rejected")

    now = utcnow()
    with atomic_batch(quotation):
        quotation.audit_status = "rejected"
        quotation.audited_by = actor.id
        quotation.audited_at = now
        quotation.rejection_reason = reason
        activity_service.write_activity(
            case_id=quotation.case_id,
            action="quotation.reject",
            message=f"Quotation #{quotation.id} rejected by {actor.label}: {reason}",
            actor=actor,
            entity_type="quotation",
            entity_id=quotation.id,
            details={"reason": reason},
            when=now,
        )

    logger.info(
        "Quotation rejected",
        extra={"case_id": quotation.case_id, "entity_type": "quotation",
               "entity_id": quotation.id, "action": "quotation.reject", "actor_id": actor.id},
    )
    return quotation.to_dict()


# ── Read side ─────────────────────────────────────────────────────────────────


def get_quotation(quotation_id: int) -> dict:
    return get_or_raise(Quotation, quotation_id).to_dict()


def list_quotations(case_id: int, status: str | None = None) -> list[dict]:
    get_or_raise(Case, case_id)
    stmt = select(Quotation).where(Quotation.case_id == case_id)
    if status:
        if status not in AUDIT_STATUSES:
            raise ValidationError(f"Unknown audit status '{status}'", details={"field": "status"})
        stmt = stmt.where(Quotation.audit_status == status)
    stmt = stmt.order_by(Quotation.id)
    return [q.to_dict(include_items=False) for q in db.session.execute(stmt).scalars()]


def list_pending_audit(case_id: int | None = None) -> list[dict]:
    """The auditor's queue, oldest first."""
    stmt = select(Quotation).where(Quotation.audit_status == "pending")
    if case_id is not None:
        stmt = stmt.where(Quotation.case_id == case_id)
    stmt = stmt.order_by(Quotation.created_at, Quotation.id)
    return [q.to_dict(include_items=False) for q in db.session.execute(stmt).scalars()]
