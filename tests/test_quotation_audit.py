"""
Tests: Quotation audit state machine.

    pending → approved | rejected   (both terminal)

Covers total derivation, item validation, the approval fan-out (document,
tasks, BOQ lock) and the guarantee that a second approval never re-runs it.
"""

import pytest

from fitout.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StateTransitionError,
    ValidationError,
)
from fitout.models.activity import CaseDocument, CaseTask
from fitout.models.quotation import compute_totals
from fitout.services import activity_service, case_service
from fitout.services import quotation_audit_service as audit


def _submit(case_id, actor, items=None, **kwargs):
    items = items or [{"item_id": "TILE-01", "quantity": 2, "unit_price": 500}]
    return audit.submit_quotation(case_id, items, actor, **kwargs)


# ── Totals ───────────────────────────────────────────────────────────────────


def test_two_by_five_hundred_at_eighteen_percent(case, actors):
    q = _submit(case["id"], actors.quoter)

    assert q["audit_status"] == "pending"
    assert q["subtotal"] == 1000.0
    assert q["discount_amount"] == 0.0
    assert q["tax_amount"] == 180.0
    assert q["grand_total"] == 1180.0
    assert q["requires_discount_approval"] is False


def test_discount_is_taxed_after_deduction(case, actors):
    q = _submit(
        case["id"], actors.quoter,
        items=[{"item_id": "SOFA-3S", "quantity": 1, "unit_price": 1000, "discount_percent": 10}],
    )

    assert q["subtotal"] == 1000.0
    assert q["discount_amount"] == 100.0
    assert q["tax_amount"] == 162.0
    assert q["grand_total"] == 1062.0
    # 10% overall discount is above the 5% threshold
    assert q["requires_discount_approval"] is True


def test_compute_totals_keeps_grand_total_identity():
    items = [
        {"item_id": "A", "quantity": "3", "unit_price": "333.33", "discount_percent": "7.5"},
        {"item_id": "B", "quantity": "1.5", "unit_price": "99.99", "discount_percent": 0},
    ]
    totals = compute_totals(items, "0.18")

    assert totals["grand_total"] == (
        totals["subtotal"] - totals["discount_amount"] + totals["tax_amount"]
    )


def test_fractional_lines_stored_at_column_scale(case, actors):
    q = _submit(
        case["id"], actors.quoter,
        items=[{"item_id": "PAINT-L", "quantity": "2.5555", "unit_price": "100.005", "discount_percent": "2.345"}],
    )

    stored = audit.get_quotation(q["id"])
    line = stored["items"][0]
    assert (line["quantity"], line["unit_price"], line["discount_percent"]) == (2.556, 100.01, 2.35)
    # totals recompute exactly from what was stored
    totals = compute_totals(stored["items"], stored["tax_rate"])
    assert float(totals["grand_total"]) == stored["grand_total"] == 294.55


def test_update_items_recomputes_totals(case, actors):
    q = _submit(case["id"], actors.quoter)

    updated = audit.update_items(
        q["id"],
        [
            {"item_id": "TILE-01", "quantity": 4, "unit_price": 500},
            {"item_id": "GROUT-5", "quantity": 2, "unit_price": 250, "discount_percent": 20},
        ],
        actors.quoter,
    )

    assert len(updated["items"]) == 2
    assert updated["subtotal"] == 2500.0
    assert updated["discount_amount"] == 100.0
    assert updated["tax_amount"] == 432.0
    assert updated["grand_total"] == 2832.0
    assert updated["grand_total"] == pytest.approx(
        updated["subtotal"] - updated["discount_amount"] + updated["tax_amount"]
    )


# ── Validation ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "items, code",
    [
        ([], "QUOTATION_EMPTY"),
        ([{"item_id": "X", "quantity": 1, "unit_price": 0}], "INVALID_RATE"),
        ([{"item_id": "X", "quantity": -1, "unit_price": 10}], "INVALID_QUANTITY"),
        ([{"item_id": "X", "quantity": "0.0004", "unit_price": 10}], "INVALID_QUANTITY"),
        ([{"item_id": "X", "quantity": 1, "unit_price": 10, "discount_percent": 120}], "INVALID_DISCOUNT"),
        ([{"quantity": 1, "unit_price": 10}], "ERR_VALIDATION_REQUIRED"),
    ],
)
def test_invalid_items_rejected_before_any_write(case, actors, items, code):
    with pytest.raises(ValidationError) as exc:
        audit.submit_quotation(case["id"], items, actors.quoter)

    assert exc.value.code == code
    assert audit.list_quotations(case["id"]) == []


def test_only_quotation_team_submits(case, actors):
    with pytest.raises(PermissionDeniedError):
        _submit(case["id"], actors.sales)


def test_tax_rate_must_be_a_fraction(case, actors):
    with pytest.raises(ValidationError):
        _submit(case["id"], actors.quoter, tax_rate=18)


# ── Approval ─────────────────────────────────────────────────────────────────


def test_approve_fans_out_in_one_batch(case, actors):
    q = _submit(case["id"], actors.quoter, title="Flooring quote")
    audit_tasks = activity_service.list_tasks(case["id"])
    assert [t["task_type"] for t in audit_tasks] == ["procurement_audit"]

    approved = audit.approve_quotation(q["id"], actors.procurement)

    assert approved["audit_status"] == "approved"
    assert approved["audited_by"] == actors.procurement.id
    assert approved["audited_at"] is not None

    tasks = {t["task_type"]: t for t in activity_service.list_tasks(case["id"])}
    assert tasks["procurement_audit"]["status"] == "completed"
    assert tasks["vendor_bidding"]["status"] == "pending"
    assert tasks["vendor_bidding"]["assigned_role"] == "procurement"

    docs = activity_service.list_documents(case["id"], client_view=True)
    assert len(docs) == 1
    assert docs[0]["quotation_id"] == q["id"]
    assert docs[0]["visible_to_client"] is True
    assert docs[0]["amount"] == 1180.0


def test_second_approval_fails_without_duplicate_fan_out(case, actors):
    q = _submit(case["id"], actors.quoter)
    audit.approve_quotation(q["id"], actors.procurement)

    with pytest.raises(StateTransitionError) as exc:
        audit.approve_quotation(q["id"], actors.admin)

    assert exc.value.code == "QUOTATION_ALREADY_AUDITED"
    assert exc.value.current_state == "approved"
    assert CaseTask.query.filter_by(case_id=case["id"], task_type="vendor_bidding").count() == 1
    assert CaseDocument.query.filter_by(case_id=case["id"]).count() == 1


def test_approved_quotation_cannot_be_edited(case, actors):
    q = _submit(case["id"], actors.quoter)
    audit.approve_quotation(q["id"], actors.procurement)

    with pytest.raises(StateTransitionError) as exc:
        audit.update_items(q["id"], [{"item_id": "X", "quantity": 1, "unit_price": 1}], actors.quoter)
    assert exc.value.code == "QUOTATION_ALREADY_AUDITED"


def test_approval_locks_the_originating_boq(case, actors):
    boq = case_service.create_boq(
        case["id"],
        [{"item_id": "TILE-01", "description": "Floor tile", "quantity": 2, "rate": 500}],
        actors.quoter,
    )
    q = _submit(case["id"], actors.quoter, boq_id=boq["id"])
    audit.approve_quotation(q["id"], actors.procurement)

    with pytest.raises(StateTransitionError) as exc:
        case_service.update_boq(boq["id"], [], actors.quoter)

    assert exc.value.code == "BOQ_LOCKED"
    assert exc.value.details["quotation_id"] == q["id"]


def test_boq_from_another_case_is_not_found(case, actors):
    other = case_service.create_case("Other site", actors.sales)
    boq = case_service.create_boq(other["id"], [], actors.quoter)

    with pytest.raises(NotFoundError):
        _submit(case["id"], actors.quoter, boq_id=boq["id"])


def test_auditor_role_required(case, actors):
    q = _submit(case["id"], actors.quoter)

    with pytest.raises(PermissionDeniedError):
        audit.approve_quotation(q["id"], actors.quoter)


# ── Rejection ────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_requires_reason(case, actors, reason):
    q = _submit(case["id"], actors.quoter)

    with pytest.raises(ValidationError) as exc:
        audit.reject_quotation(q["id"], actors.procurement, reason)

    assert exc.value.code == "REJECTION_REASON_REQUIRED"
    assert audit.get_quotation(q["id"])["audit_status"] == "pending"


def test_rejected_quotation_is_terminal(case, actors):
    q = _submit(case["id"], actors.quoter)
    rejected = audit.reject_quotation(q["id"], actors.procurement, "Rates above market")

    assert rejected["audit_status"] == "rejected"
    assert rejected["rejection_reason"] == "Rates above market"
    with pytest.raises(StateTransitionError):
        audit.approve_quotation(q["id"], actors.procurement)
    assert activity_service.list_documents(case["id"]) == []


def test_pending_audit_queue(case, actors):
    first = _submit(case["id"], actors.quoter)
    second = _submit(case["id"], actors.quoter)
    audit.approve_quotation(first["id"], actors.procurement)

    queue = audit.list_pending_audit()
    assert [q["id"] for q in queue] == [second["id"]]


def test_quotation_listing_filters_by_audit_status(case, actors):
    first = _submit(case["id"], actors.quoter)
    second = _submit(case["id"], actors.quoter)
    audit.approve_quotation(first["id"], actors.procurement)

    assert [q["id"] for q in audit.list_quotations(case["id"], status="approved")] == [first["id"]]
    assert [q["id"] for q in audit.list_quotations(case["id"], status="pending")] == [second["id"]]
    with pytest.raises(ValidationError):
        audit.list_quotations(case["id"], status="draft")
