"""
Cost center spend ledger.

The cost center itself is created only by execution-plan activation. This
service records spend against it: each call appends a CostCenterEntry and
updates the category bucket, ``spent_amount`` and ``remaining_amount`` in one
batch. CostCenter is versioned, so two concurrent spends never lose an
increment; the loser gets ConcurrencyConflictError and retries.
"""

from __future__ import annotations

import logging

from fitout.core.exceptions import StateTransitionError, ValidationError
from fitout.models.case import SPEND_CATEGORIES, Case, CostCenterEntry
from fitout.models.roles import Actor, Role
from fitout.services import activity_service
from fitout.services.helpers.guards import positive_decimal, require_role, utcnow
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise
from fitout.utils.helpers import money

logger = logging.getLogger(__name__)

SPEND_ROLES = (Role.ACCOUNTS, Role.EXECUTION_TEAM, Role.SUPER_ADMIN)


def _get_cost_center(case: Case):
    if case.cost_center is None:
        raise StateTransitionError(
            "Cost center is created when the execution plan is fully approved",
            current_state=case.status,
            code="COST_CENTER_NOT_INITIALIZED",
        )
    return case.cost_center


def record_spend(
    case_id: int,
    amount,
    category: str,
    actor: Actor,
    description: str | None = None,
) -> dict:
    require_role(actor, SPEND_ROLES, "record cost-center spend")
    if category not in SPEND_CATEGORIES:
        raise ValidationError(
            f"category must be one of {sorted(SPEND_CATEGORIES)}",
            code="INVALID_CATEGORY",
            details={"field": "category"},
        )
    value = money(positive_decimal(amount, "amount", "INVALID_AMOUNT"))
    case = get_or_raise(Case, case_id)
    cost_center = _get_cost_center(case)
    if case.status != "execution_active":
        raise StateTransitionError(
            "Spend can only be recorded while execution is active",
            current_state=case.status,
            code="CASE_NOT_ACTIVE",
        )

    now = utcnow()
    with atomic_batch(cost_center):
        setattr(cost_center, category, (getattr(cost_center, category) or 0) + value)
        cost_center.spent_amount = (cost_center.spent_amount or 0) + value
        cost_center.remaining_amount = cost_center.total_budget - cost_center.spent_amount
        cost_center.updated_at = now
        cost_center.entries.append(CostCenterEntry(
            category=category,
            amount=value,
            description=(description or "").strip() or None,
            recorded_by=actor.id,
            recorded_at=now,
        ))
        activity_service.write_activity(
            case_id=case.id,
            action="cost_center.spend",
            message=f"{category.capitalize()} spend of {value} recorded by {actor.label}",
            actor=actor,
            entity_type="cost_center",
            entity_id=cost_center.id,
            details={"category": category, "amount": str(value)},
            when=now,
        )

    if cost_center.remaining_amount < 0:
        logger.warning(
            "Cost center overspent",
            extra={"case_id": case.id, "entity_type": "cost_center", "entity_id": cost_center.id,
                   "action": "cost_center.spend", "actor_id": actor.id},
        )
    logger.info(
        "Spend recorded",
        extra={"case_id": case.id, "entity_type": "cost_center", "entity_id": cost_center.id,
               "action": "cost_center.spend", "actor_id": actor.id},
    )
    return cost_center.to_dict()


def get_cost_center(case_id: int, include_entries: bool = True) -> dict:
    case = get_or_raise(Case, case_id)
    cost_center = _get_cost_center(case)
    result = cost_center.to_dict()
    if include_entries:
        result["entries"] = [e.to_dict() for e in cost_center.entries]
    return result
