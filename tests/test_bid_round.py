"""
Tests: Vendor bid round state machine.

    bidding → vendor_selected → admin_approved → locked   (terminal)

Key properties:
    - lock requires a selected vendor AND an admin approval
    - changing the selection clears the approval
    - after lock, every mutation fails with ROUND_LOCKED
"""

import pytest

from fitout.core.exceptions import PermissionDeniedError, StateTransitionError, ValidationError
from fitout.models.activity import CaseActivity
from fitout.services import activity_service
from fitout.services import bid_round_service as rounds
from fitout.services import quotation_audit_service as audit


@pytest.fixture()
def round_(approved_quotation, actors):
    return rounds.create_round(approved_quotation["id"], ["V-A", "V-B"], actors.procurement)


def _bid(round_id, vendor, amount, days):
    return rounds.submit_bid(round_id, vendor.id, amount, days, vendor, vendor_name=vendor.name)


# ── Creation ─────────────────────────────────────────────────────────────────


def test_round_snapshots_quotation_lines(round_, approved_quotation):
    assert round_["phase"] == "bidding"
    assert round_["status"] == "open"
    assert round_["case_id"] == approved_quotation["case_id"]
    assert round_["invited_vendor_ids"] == ["V-A", "V-B"]
    assert round_["item_lines"] == [
        {"item_id": "TILE-01", "name": "Vitrified tile", "unit": None, "quantity": 2.0, "rate": 500.0},
    ]
    assert round_["reference_total"] == 1000.0


def test_round_needs_approved_quotation(case, actors):
    pending = audit.submit_quotation(
        case["id"], [{"item_id": "X", "quantity": 1, "unit_price": 10}], actors.quoter,
    )

    with pytest.raises(StateTransitionError) as exc:
        rounds.create_round(pending["id"], ["V-A"], actors.procurement)
    assert exc.value.code == "QUOTATION_NOT_APPROVED"


@pytest.mark.parametrize("invited", [None, [], ["", "  "]])
def test_round_needs_invited_vendors(approved_quotation, actors, invited):
    with pytest.raises(ValidationError) as exc:
        rounds.create_round(approved_quotation["id"], invited, actors.procurement)
    assert exc.value.code == "NO_INVITED_VENDORS"


# ── Scenario from the product brief ──────────────────────────────────────────


def test_lock_freezes_round_against_late_bids(round_, actors):
    vendor_a, vendor_b = actors.vendor("V-A"), actors.vendor("V-B")
    _bid(round_["id"], vendor_a, 90000, 10)
    _bid(round_["id"], vendor_b, 85000, 14)

    rounds.select_vendor(round_["id"], "V-B", actors.procurement)
    rounds.set_admin_approval(round_["id"], actors.admin)
    locked = rounds.lock_vendor(round_["id"], actors.procurement)

    assert locked["phase"] == "locked"
    assert locked["status"] == "closed"
    assert locked["selected_vendor_id"] == "V-B"

    with pytest.raises(StateTransitionError) as exc:
        _bid(round_["id"], vendor_a, 80000, 9)
    assert exc.value.code == "ROUND_LOCKED"

    with pytest.raises(StateTransitionError) as exc:
        rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    assert exc.value.code == "ROUND_LOCKED"

    tasks = {t["task_type"]: t for t in activity_service.list_tasks(round_["case_id"])}
    assert tasks["vendor_bidding"]["status"] == "completed"
    assert tasks["purchase_order"]["status"] == "pending"


# ── Lock preconditions ───────────────────────────────────────────────────────


def test_lock_requires_selection(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)

    with pytest.raises(StateTransitionError) as exc:
        rounds.lock_vendor(round_["id"], actors.procurement)
    assert exc.value.code == "VENDOR_NOT_SELECTED"


def test_lock_requires_admin_approval(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)

    with pytest.raises(StateTransitionError) as exc:
        rounds.lock_vendor(round_["id"], actors.procurement)
    assert exc.value.code == "ADMIN_APPROVAL_REQUIRED"
    assert rounds.get_round(round_["id"])["locked_at"] is None


def test_admin_approval_needs_a_selection(round_, actors):
    with pytest.raises(StateTransitionError) as exc:
        rounds.set_admin_approval(round_["id"], actors.admin)
    assert exc.value.code == "VENDOR_NOT_SELECTED"


# ── Selection vs approval ────────────────────────────────────────────────────


def test_changing_selection_clears_admin_approval(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    _bid(round_["id"], actors.vendor("V-B"), 85000, 14)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    approved = rounds.set_admin_approval(round_["id"], actors.admin)
    assert approved["phase"] == "admin_approved"

    reselected = rounds.select_vendor(round_["id"], "V-B", actors.procurement)

    assert reselected["selected_vendor_id"] == "V-B"
    assert reselected["admin_approved_at"] is None
    assert reselected["admin_approved_by"] is None
    assert reselected["phase"] == "vendor_selected"
    with pytest.raises(StateTransitionError) as exc:
        rounds.lock_vendor(round_["id"], actors.procurement)
    assert exc.value.code == "ADMIN_APPROVAL_REQUIRED"


def test_reselecting_same_vendor_keeps_approval(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    rounds.set_admin_approval(round_["id"], actors.admin)

    again = rounds.select_vendor(round_["id"], "V-A", actors.procurement)

    assert again["phase"] == "admin_approved"
    assert again["admin_approved_by"] == actors.admin.id


def test_admin_approval_is_idempotent(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    first = rounds.set_admin_approval(round_["id"], actors.admin)

    second = rounds.set_admin_approval(round_["id"], actors.admin)

    assert second["admin_approved_at"] == first["admin_approved_at"]
    assert second["version"] == first["version"]
    assert CaseActivity.query.filter_by(action="bid_round.approve").count() == 1


def test_only_super_admin_approves_selection(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)

    with pytest.raises(PermissionDeniedError):
        rounds.set_admin_approval(round_["id"], actors.procurement)


def test_selecting_vendor_without_bid_fails(round_, actors):
    with pytest.raises(ValidationError) as exc:
        rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    assert exc.value.code == "VENDOR_HAS_NO_BID"


# ── Bids ─────────────────────────────────────────────────────────────────────


def test_resubmission_replaces_vendor_bid(round_, actors):
    vendor_a = actors.vendor("V-A")
    _bid(round_["id"], vendor_a, 90000, 10)

    revised = _bid(round_["id"], vendor_a, 87500, 12)

    assert revised["revision"] == 2
    bids = rounds.get_round(round_["id"])["bids"]
    assert len(bids) == 1
    assert bids[0]["total_amount"] == 87500.0
    assert bids[0]["delivery_days"] == 12


def test_selected_vendor_revising_bid_clears_approval(round_, actors):
    vendor_a = actors.vendor("V-A")
    _bid(round_["id"], vendor_a, 90000, 10)
    rounds.select_vendor(round_["id"], "V-A", actors.procurement)
    rounds.set_admin_approval(round_["id"], actors.admin)

    _bid(round_["id"], vendor_a, 95000, 10)

    current = rounds.get_round(round_["id"])
    assert current["phase"] == "vendor_selected"
    assert current["admin_approved_at"] is None


def test_procurement_can_bid_on_behalf_of_vendor(round_, actors):
    bid = rounds.submit_bid(round_["id"], "V-B", "85000.00", 14, actors.procurement)

    assert bid["vendor_id"] == "V-B"
    assert bid["submitted_by"] == actors.procurement.id


def test_vendor_cannot_bid_for_someone_else(round_, actors):
    with pytest.raises(PermissionDeniedError) as exc:
        rounds.submit_bid(round_["id"], "V-B", 1000, 5, actors.vendor("V-A"))
    assert exc.value.code == "VENDOR_MISMATCH"


def test_uninvited_vendor_rejected(round_, actors):
    with pytest.raises(PermissionDeniedError) as exc:
        _bid(round_["id"], actors.vendor("V-Z"), 1000, 5)
    assert exc.value.code == "VENDOR_NOT_INVITED"


@pytest.mark.parametrize(
    "amount, days, code",
    [
        (0, 10, "INVALID_AMOUNT"),
        ("abc", 10, "INVALID_AMOUNT"),
        (1000, -1, "INVALID_DELIVERY_DAYS"),
        (1000, "10", "INVALID_DELIVERY_DAYS"),
        (1000, 2.5, "INVALID_DELIVERY_DAYS"),
    ],
)
def test_bid_validation(round_, actors, amount, days, code):
    with pytest.raises(ValidationError) as exc:
        _bid(round_["id"], actors.vendor("V-A"), amount, days)
    assert exc.value.code == code


# ── Close / listings / comparison ────────────────────────────────────────────


def test_close_hides_round_from_vendor_listing(round_, actors):
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    listing = rounds.list_rounds_for_vendor("V-A")
    assert [r["id"] for r in listing] == [round_["id"]]
    assert listing[0]["my_bid"]["total_amount"] == 90000.0
    assert "bids" not in listing[0]
    assert rounds.list_rounds_for_vendor("V-Z") == []

    closed = rounds.close_round(round_["id"], actors.procurement)

    assert closed["status"] == "closed"
    assert closed["phase"] == "bidding"
    assert rounds.list_rounds_for_vendor("V-A") == []
    # closing is not locking: bids are still accepted
    assert _bid(round_["id"], actors.vendor("V-B"), 85000, 14)["vendor_id"] == "V-B"


def test_round_listing_filters_by_status(round_, actors):
    case_id = round_["case_id"]
    assert [r["id"] for r in rounds.list_rounds(case_id, status="open")] == [round_["id"]]

    rounds.close_round(round_["id"], actors.procurement)

    assert rounds.list_rounds(case_id, status="open") == []
    assert [r["id"] for r in rounds.list_rounds(case_id, status="closed")] == [round_["id"]]
    with pytest.raises(ValidationError):
        rounds.list_rounds(case_id, status="archived")


def test_compare_bids_ranks_by_amount_then_days(approved_quotation, actors):
    round_ = rounds.create_round(
        approved_quotation["id"],
        ["V-A", "V-B", "V-C"],
        actors.procurement,
        item_lines=[{"item_id": "FITOUT", "name": "Complete fit-out", "quantity": 1, "rate": 88000}],
    )
    _bid(round_["id"], actors.vendor("V-A"), 90000, 10)
    _bid(round_["id"], actors.vendor("V-B"), 85000, 14)
    _bid(round_["id"], actors.vendor("V-C"), 85000, 12)
    rounds.select_vendor(round_["id"], "V-B", actors.procurement)

    comparison = rounds.compare_bids(round_["id"])

    assert comparison["reference_total"] == 88000.0
    assert [b["vendor_id"] for b in comparison["bids"]] == ["V-C", "V-B", "V-A"]
    by_vendor = {b["vendor_id"]: b for b in comparison["bids"]}
    assert by_vendor["V-B"]["variance"] == -3000.0
    assert by_vendor["V-B"]["variance_pct"] == -3.41
    assert by_vendor["V-B"]["is_selected"] is True
    assert by_vendor["V-A"]["variance"] == 2000.0
    assert by_vendor["V-A"]["variance_pct"] == 2.27
