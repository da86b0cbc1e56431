"""
Vendor Bid Round state machine.

    bidding ──select_vendor──▶ vendor_selected ──set_admin_approval──▶ admin_approved
            ──lock_vendor──▶ locked   (terminal, also closes the round)

    open / closed is an orthogonal visibility flag (close_round).

Rules:
    - A round is created from an approved quotation and snapshots its lines.
    - Bids upsert per vendor (last write wins for that vendor) until lock.
    - Changing the selected vendor clears any admin approval, so an approval
      given for vendor A can never ride into a lock of vendor B.
    - A bid revision by the selected vendor clears the approval too: the
      approved price is no longer the live one.
    - Admin approval is idempotent; the second call is a no-op.
    - After lock, bids, selection and approval all fail with ROUND_LOCKED.

BidRound is versioned, so two sessions racing on the same round (select vs
approve) surface a ConcurrencyConflictError instead of a silent overwrite.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from fitout.core.exceptions import PermissionDeniedError, StateTransitionError, ValidationError
from fitout.models import db
from fitout.models.bidding import ROUND_STATUSES, BidRound, VendorBid
from fitout.models.quotation import Quotation
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.helpers.guards import (
    ADMIN_ROLES,
    positive_decimal,
    require_role,
    require_text,
    utcnow,
)
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import as_float, money, to_decimal

logger = logging.getLogger(__name__)

SOURCING_ROLES = (Role.PROCUREMENT, Role.SUPER_ADMIN)


def _require_unlocked(round_: BidRound) -> None:
    if round_.is_locked:
        raise StateTransitionError(
            f"Bid round {round_.id} is locked",
            current_state="locked",
            code="ROUND_LOCKED",
            details={"selected_vendor_id": round_.selected_vendor_id},
        )


def _log(round_: BidRound, message: str, action: str, actor: Actor) -> None:
    logger.info(
        message,
        extra={"case_id": round_.case_id, "entity_type": "bid_round", "entity_id": round_.id,
               "action": action, "actor_id": actor.id},
    )


def _snapshot_lines(quotation: Quotation, item_lines=None) -> list[dict]:
    """Freeze what vendors bid against. Explicit lines override the quotation's."""
    source = item_lines if item_lines else [
        {
            "item_id": item.item_id,
            "name": item.name,
            "unit": item.unit,
            "quantity": item.quantity,
            "rate": item.unit_price,
        }
        for item in quotation.items
    ]
    lines = []
    for idx, raw in enumerate(source):
        if not isinstance(raw, dict):
            raise ValidationError(f"item_lines[{idx}] must be an object", details={"field": "item_lines"})
        try:
            quantity = to_decimal(raw.get("quantity"), f"item_lines[{idx}].quantity")
            rate = to_decimal(raw.get("rate") or 0, f"item_lines[{idx}].rate")
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "item_lines"}) from exc
        lines.append({
            "item_id": str(raw.get("item_id") or ""),
            "name": raw.get("name"),
            "unit": raw.get("unit"),
            "quantity": float(quantity),
            "rate": float(rate),
        })
    return lines


# ── Transitions ──────────────────────────────────────────────────────────────


def create_round(
    quotation_id: int,
    invited_vendor_ids,
    actor: Actor,
    item_lines=None,
) -> dict:
    """Open a bid round for an approved quotation."""
    require_role(actor, SOURCING_ROLES, "create a bid round")
    quotation = get_or_raise(Quotation, quotation_id)
    if quotation.audit_status != "approved":
        raise StateTransitionError(
            "Bidding needs an approved quotation",
            current_state=quotation.audit_status,
            code="QUOTATION_NOT_APPROVED",
        )
    invited = []
    for vendor_id in invited_vendor_ids or []:
        vendor_id = str(vendor_id).strip()
        if vendor_id and vendor_id not in invited:
            invited.append(vendor_id)
    if not invited:
        raise ValidationError(
            "At least one vendor must be invited",
            code="NO_INVITED_VENDORS",
            details={"field": "invited_vendor_ids"},
        )

    lines = _snapshot_lines(quotation, item_lines)
    reference_total = money(sum(
        (Decimal(str(line["quantity"])) * Decimal(str(line["rate"])) for line in lines),
        Decimal("0"),
    ))
    round_ = BidRound(
        case_id=quotation.case_id,
        quotation_id=quotation.id,
        item_lines=lines,
        reference_total=reference_total,
        invited_vendor_ids=invited,
        status="open",
        created_by=actor.id,
    )
    with atomic_batch(round_):
        db.session.add(round_)
        db.session.flush()
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.create",
            message=f"Bid round #{round_.id} opened for {len(invited)} vendor(s)",
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            details={"invited_vendor_ids": invited},
        )
    _log(round_, "Bid round created", "bid_round.create", actor)
    return round_.to_dict()


def submit_bid(
    round_id: int,
    vendor_id: str,
    total_amount,
    delivery_days,
    actor: Actor,
    *,
    vendor_name: str | None = None,
    notes: str | None = None,
) -> dict:
    """Place or replace a vendor's bid. Legal any time before lock.

    Amounts are not checked against the reference total: a bid above or
    below it is a negotiation signal, not a violation.
    """
    require_role(actor, (Role.VENDOR, Role.PROCUREMENT), "submit a bid")
    vendor_id = require_text(vendor_id, "vendor_id")
    if actor.role == Role.VENDOR and actor.id != vendor_id:
        raise PermissionDeniedError(
            "Vendors may only bid for themselves", role=actor.role.value, code="VENDOR_MISMATCH",
        )
    round_ = get_or_raise(BidRound, round_id)
    _require_unlocked(round_)
    if vendor_id not in (round_.invited_vendor_ids or []):
        raise PermissionDeniedError(
            f"Vendor {vendor_id} is not invited to round {round_.id}",
            role=actor.role.value,
            code="VENDOR_NOT_INVITED",
        )
    amount = positive_decimal(total_amount, "total_amount", "INVALID_AMOUNT")
    if isinstance(delivery_days, bool) or not isinstance(delivery_days, int) or delivery_days < 0:
        raise ValidationError(
            "delivery_days must be a non-negative integer",
            code="INVALID_DELIVERY_DAYS",
            details={"field": "delivery_days"},
        )

    now = utcnow()
    cleared_approval = False
    with atomic_batch(round_):
        bid = round_.bid_for(vendor_id)
        if bid is None:
            bid = VendorBid(vendor_id=vendor_id, revision=1)
            round_.bids.append(bid)
        else:
            bid.revision = (bid.revision or 1) + 1
            if round_.selected_vendor_id == vendor_id and round_.admin_approved_at is not None:
                round_.admin_approved_at = None
                round_.admin_approved_by = None
                cleared_approval = True
        bid.vendor_name = vendor_name or bid.vendor_name
        bid.total_amount = money(amount)
        bid.delivery_days = delivery_days
        bid.notes = notes
        bid.submitted_by = actor.id
        bid.submitted_at = now
        round_.updated_at = now
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.bid",
            message=f"Vendor {vendor_id} bid {bid.total_amount} / {delivery_days} days on round #{round_.id}",
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            details={"vendor_id": vendor_id, "revision": bid.revision,
                     "cleared_admin_approval": cleared_approval},
            when=now,
        )
    _log(round_, "Vendor bid submitted", "bid_round.bid", actor)
    return bid.to_dict()


def select_vendor(round_id: int, vendor_id: str, actor: Actor) -> dict:
    """Choose the winning bid. A different vendor clears the admin approval."""
    require_role(actor, SOURCING_ROLES, "select a vendor")
    round_ = get_or_raise(BidRound, round_id)
    _require_unlocked(round_)
    if round_.bid_for(vendor_id) is None:
        raise ValidationError(
            f"Vendor {vendor_id} has no bid in round {round_.id}",
            code="VENDOR_HAS_NO_BID",
            details={"vendor_id": vendor_id},
        )
    if round_.selected_vendor_id == vendor_id:
        return round_.to_dict()

    now = utcnow()
    cleared = round_.admin_approved_at is not None
    with atomic_batch(round_):
        round_.selected_vendor_id = vendor_id
        round_.selected_at = now
        round_.selected_by = actor.id
        round_.admin_approved_at = None
        round_.admin_approved_by = None
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.select",
            message=f"Vendor {vendor_id} selected on round #{round_.id}"
                    + (" (previous admin approval cleared)" if cleared else ""),
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            details={"vendor_id": vendor_id, "cleared_admin_approval": cleared},
            when=now,
        )
    _log(round_, "Vendor selected", "bid_round.select", actor)
    return round_.to_dict()


def set_admin_approval(round_id: int, actor: Actor) -> dict:
    """Approve the current selection. Idempotent: stamps only once."""
    require_role(actor, ADMIN_ROLES, "approve a vendor selection")
    round_ = get_or_raise(BidRound, round_id)
    _require_unlocked(round_)
    if not round_.selected_vendor_id:
        raise StateTransitionError(
            "Select a vendor first", current_state=round_.phase, code="VENDOR_NOT_SELECTED",
        )
    if round_.admin_approved_at is not None:
        logger.info(
            "Admin approval already recorded; no-op",
            extra={"case_id": round_.case_id, "entity_type": "bid_round", "entity_id": round_.id,
                   "action": "bid_round.approve", "actor_id": actor.id},
        )
        return round_.to_dict()

    now = utcnow()
    with atomic_batch(round_):
        round_.admin_approved_at = now
        round_.admin_approved_by = actor.id
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.approve",
            message=f"Selection of vendor {round_.selected_vendor_id} approved by {actor.label}",
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            details={"vendor_id": round_.selected_vendor_id},
            when=now,
        )
    _log(round_, "Vendor selection approved", "bid_round.approve", actor)
    return round_.to_dict()


def lock_vendor(round_id: int, actor: Actor) -> dict:
    """Terminal: freeze the round on the approved selection."""
    require_role(actor, SOURCING_ROLES, "lock a vendor")
    round_ = get_or_raise(BidRound, round_id)
    _require_unlocked(round_)
    if not round_.selected_vendor_id:
        raise StateTransitionError(
            "Select a vendor first", current_state=round_.phase, code="VENDOR_NOT_SELECTED",
        )
    if round_.admin_approved_at is None:
        raise StateTransitionError(
            "Admin approval of the selected vendor is required before lock",
            current_state=round_.phase,
            code="ADMIN_APPROVAL_REQUIRED",
        )

    now = utcnow()
    bid = round_.bid_for(round_.selected_vendor_id)
    with atomic_batch(round_):
        round_.locked_at = now
        round_.locked_by = actor.id
        round_.status = "closed"
        if round_.closed_at is None:
            round_.closed_at = now
        activity_service.complete_open_tasks(round_.case_id, "vendor_bidding", actor, now)
        activity_service.create_task(
            case_id=round_.case_id,
            task_type="purchase_order",
            title=f"Raise purchase order to vendor {round_.selected_vendor_id}",
            assigned_role=Role.PROCUREMENT.value,
            entity_type="bid_round",
            entity_id=round_.id,
            actor=actor,
        )
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.lock",
            message=f"Vendor {round_.selected_vendor_id} locked on round #{round_.id}"
                    + (f" at {bid.total_amount}" if bid else ""),
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            details={"vendor_id": round_.selected_vendor_id},
            when=now,
        )
    _log(round_, "Vendor locked", "bid_round.lock", actor)
    return round_.to_dict()


def close_round(round_id: int, actor: Actor) -> dict:
    """Hide the round from vendor listings without locking it."""
    require_role(actor, SOURCING_ROLES, "close a bid round")
    round_ = get_or_raise(BidRound, round_id)
    _require_unlocked(round_)
    if round_.status == "closed":
        return round_.to_dict()
    now = utcnow()
    with atomic_batch(round_):
        round_.status = "closed"
        round_.closed_at = now
        activity_service.write_activity(
            case_id=round_.case_id,
            action="bid_round.close",
            message=f"Bid round #{round_.id} closed for bidding",
            actor=actor,
            entity_type="bid_round",
            entity_id=round_.id,
            when=now,
        )
    _log(round_, "Bid round closed", "bid_round.close", actor)
    return round_.to_dict()


# ── Read side ─────────────────────────────────────────────────────────────────


def get_round(round_id: int) -> dict:
    return get_or_raise(BidRound, round_id).to_dict()


def list_rounds(case_id: int, status: str | None = None) -> list[dict]:
    stmt = select(BidRound).where(BidRound.case_id == case_id)
    if status:
        if status not in ROUND_STATUSES:
            raise ValidationError(f"Unknown round status '{status}'", details={"field": "status"})
        stmt = stmt.where(BidRound.status == status)
    stmt = stmt.order_by(BidRound.id)
    return [r.to_dict() for r in db.session.execute(stmt).scalars()]


def list_rounds_for_vendor(vendor_id: str) -> list[dict]:
    """Open rounds the vendor is invited to, showing only that vendor's own bid."""
    stmt = select(BidRound).where(BidRound.status == "open").order_by(BidRound.id)
    result = []
    for round_ in db.session.execute(stmt).scalars():
        if vendor_id not in (round_.invited_vendor_ids or []):
            continue
        data = round_.to_dict(include_bids=False)
        own = round_.bid_for(vendor_id)
        data["my_bid"] = own.to_dict() if own else None
        result.append(data)
    return result


def compare_bids(round_id: int) -> dict:
    """Rank bids by amount, then delivery days, with variance vs the reference."""
    round_ = get_or_raise(BidRound, round_id)
    reference = round_.reference_total
    ranked = sorted(round_.bids, key=lambda b: (b.total_amount, b.delivery_days, b.submitted_at))
    rows = []
    for rank, bid in enumerate(ranked, start=1):
        variance = bid.total_amount - reference if reference is not None else None
        variance_pct = None
        if variance is not None and reference:
            variance_pct = round(float(variance / reference * 100), 2)
        rows.append({
            "rank": rank,
            "vendor_id": bid.vendor_id,
            "vendor_name": bid.vendor_name,
            "total_amount": as_float(bid.total_amount),
            "delivery_days": bid.delivery_days,
            "variance": as_float(variance),
            "variance_pct": variance_pct,
            "is_selected": bid.vendor_id == round_.selected_vendor_id,
        })
    return {
        "round_id": round_.id,
        "phase": round_.phase,
        "reference_total": as_float(reference),
        "bids": rows,
    }
