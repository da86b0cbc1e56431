"""
Procurement scheduling ledger blueprint.

Endpoints:
    GET  /api/v1/cases/<case_id>/procurement/unscheduled      plan lines not yet scheduled
    GET  /api/v1/cases/<case_id>/procurement/plans            (?status=)
    POST /api/v1/cases/<case_id>/procurement/plans            schedule one line
    GET  /api/v1/cases/<case_id>/procurement/reconciliation   required vs scheduled
    GET  /api/v1/cases/<case_id>/procurement/summary
    POST /api/v1/procurement/plans/<id>/deliver
    POST /api/v1/procurement/plans/<id>/invoice               body: {purchase_invoice_id}
    GET  /api/v1/procurement/pending-invoice                  accounts queue (?case_id=)
    GET  /api/v1/vendors/<vendor_id>/procurement-plans        (?status=)
"""

from flask import Blueprint, jsonify, request

import fitout.services.procurement_service as ledger
from fitout.blueprints import current_actor, json_body
from fitout.core.exceptions import PermissionDeniedError
from fitout.middleware.identity import actor_required
from fitout.models.roles import Role
from fitout.utils.errors import register_error_handlers

procurement_bp = Blueprint("procurement", __name__, url_prefix="/api/v1")
register_error_handlers(procurement_bp)


@procurement_bp.route("/cases/<int:case_id>/procurement/unscheduled", methods=["GET"])
@actor_required
def list_unscheduled(case_id):
    return jsonify(list(ledger.list_unscheduled(case_id))), 200


@procurement_bp.route("/cases/<int:case_id>/procurement/plans", methods=["GET"])
@actor_required
def list_plans(case_id):
    return jsonify(ledger.list_plans(case_id, request.args.get("status"))), 200


@procurement_bp.route("/cases/<int:case_id>/procurement/plans", methods=["POST"])
@actor_required
def create_plan(case_id):
    data = json_body()
    result = ledger.create_plan(
        case_id,
        data.get("catalog_item_id"),
        data.get("quantity"),
        data.get("required_on"),
        data.get("vendor_id"),
        data.get("expected_delivery_date"),
        current_actor(),
        vendor_name=data.get("vendor_name"),
        item_name=data.get("item_name"),
        work_description=data.get("work_description"),
    )
    return jsonify(result), 201


@procurement_bp.route("/cases/<int:case_id>/procurement/reconciliation", methods=["GET"])
@actor_required
def reconciliation(case_id):
    return jsonify(ledger.quantity_reconciliation(case_id)), 200


@procurement_bp.route("/cases/<int:case_id>/procurement/summary", methods=["GET"])
@actor_required
def summary(case_id):
    return jsonify(ledger.ledger_summary(case_id)), 200


@procurement_bp.route("/procurement/plans/<int:plan_id>/deliver", methods=["POST"])
@actor_required
def mark_delivered(plan_id):
    return jsonify(ledger.mark_delivered(plan_id, current_actor())), 200


@procurement_bp.route("/procurement/plans/<int:plan_id>/invoice", methods=["POST"])
@actor_required
def mark_invoiced(plan_id):
    data = json_body()
    return jsonify(ledger.mark_invoiced(plan_id, data.get("purchase_invoice_id"), current_actor())), 200


@procurement_bp.route("/procurement/pending-invoice", methods=["GET"])
@actor_required
def pending_invoice():
    return jsonify(ledger.list_delivered_pending_invoice(request.args.get("case_id", type=int))), 200


@procurement_bp.route("/vendors/<vendor_id>/procurement-plans", methods=["GET"])
@actor_required
def vendor_plans(vendor_id):
    actor = current_actor()
    if actor.role == Role.VENDOR and actor.id != vendor_id:
        raise PermissionDeniedError(
            "Vendors may only list their own deliveries", role=actor.role.value, code="VENDOR_MISMATCH",
        )
    return jsonify(ledger.list_plans_for_vendor(vendor_id, request.args.get("status"))), 200
