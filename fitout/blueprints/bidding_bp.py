"""
Vendor bidding blueprint.

Endpoints:
    POST /api/v1/quotations/<qid>/bid-rounds        open a round
    GET  /api/v1/cases/<case_id>/bid-rounds         (?status=open|closed)
    GET  /api/v1/bid-rounds/<id>
    GET  /api/v1/bid-rounds/<id>/comparison         ranked bids vs reference
    POST /api/v1/bid-rounds/<id>/bids               vendor (own id) or procurement
    POST /api/v1/bid-rounds/<id>/select             body: {vendor_id}
    POST /api/v1/bid-rounds/<id>/admin-approval     super admin, idempotent
    POST /api/v1/bid-rounds/<id>/lock
    POST /api/v1/bid-rounds/<id>/close
    GET  /api/v1/vendors/<vendor_id>/bid-rounds     open rounds the vendor is invited to
"""

from flask import Blueprint, jsonify, request

import fitout.services.bid_round_service as rounds
from fitout.blueprints import current_actor, json_body
from fitout.core.exceptions import PermissionDeniedError
from fitout.middleware.identity import actor_required
from fitout.models.roles import Role
from fitout.utils.errors import register_error_handlers

bidding_bp = Blueprint("bidding", __name__, url_prefix="/api/v1")
register_error_handlers(bidding_bp)


@bidding_bp.route("/quotations/<int:quotation_id>/bid-rounds", methods=["POST"])
@actor_required
def create_round(quotation_id):
    data = json_body()
    result = rounds.create_round(
        quotation_id,
        data.get("invited_vendor_ids"),
        current_actor(),
        item_lines=data.get("item_lines"),
    )
    return jsonify(result), 201


@bidding_bp.route("/cases/<int:case_id>/bid-rounds", methods=["GET"])
@actor_required
def list_rounds(case_id):
    return jsonify(rounds.list_rounds(case_id, request.args.get("status"))), 200


@bidding_bp.route("/bid-rounds/<int:round_id>", methods=["GET"])
@actor_required
def get_round(round_id):
    return jsonify(rounds.get_round(round_id)), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/comparison", methods=["GET"])
@actor_required
def compare_bids(round_id):
    return jsonify(rounds.compare_bids(round_id)), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/bids", methods=["POST"])
@actor_required
def submit_bid(round_id):
    data = json_body()
    actor = current_actor()
    vendor_id = data.get("vendor_id") or (actor.id if actor.role == Role.VENDOR else None)
    result = rounds.submit_bid(
        round_id,
        vendor_id,
        data.get("total_amount"),
        data.get("delivery_days"),
        actor,
        vendor_name=data.get("vendor_name") or (actor.name if actor.role == Role.VENDOR else None),
        notes=data.get("notes"),
    )
    return jsonify(result), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/select", methods=["POST"])
@actor_required
def select_vendor(round_id):
    data = json_body()
    return jsonify(rounds.select_vendor(round_id, data.get("vendor_id"), current_actor())), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/admin-approval", methods=["POST"])
@actor_required
def admin_approval(round_id):
    return jsonify(rounds.set_admin_approval(round_id, current_actor())), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/lock", methods=["POST"])
@actor_required
def lock_vendor(round_id):
    return jsonify(rounds.lock_vendor(round_id, current_actor())), 200


@bidding_bp.route("/bid-rounds/<int:round_id>/close", methods=["POST"])
@actor_required
def close_round(round_id):
    return jsonify(rounds.close_round(round_id, current_actor())), 200


@bidding_bp.route("/vendors/<vendor_id>/bid-rounds", methods=["GET"])
@actor_required
def vendor_rounds(vendor_id):
    actor = current_actor()
    if actor.role == Role.VENDOR and actor.id != vendor_id:
        raise PermissionDeniedError(
            "Vendors may only list their own rounds", role=actor.role.value, code="VENDOR_MISMATCH",
        )
    return jsonify(rounds.list_rounds_for_vendor(vendor_id)), 200
