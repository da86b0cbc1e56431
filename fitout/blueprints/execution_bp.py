"""
Execution plan blueprint.

Endpoints:
    PUT  /api/v1/cases/<case_id>/execution-plan                     submit / revise draft
    GET  /api/v1/cases/<case_id>/execution-plan
    POST /api/v1/cases/<case_id>/execution-plan/approvals/<party>   preparer | admin | client
    POST /api/v1/cases/<case_id>/execution-plan/reject              body: {reason?}

Body for PUT: {"kind": "days" | "phases", "items": [...], "notes": "..."}
"""

from flask import Blueprint, jsonify

import fitout.services.execution_plan_service as plans
from fitout.blueprints import current_actor, json_body
from fitout.middleware.identity import actor_required
from fitout.utils.errors import register_error_handlers

execution_bp = Blueprint("execution", __name__, url_prefix="/api/v1")
register_error_handlers(execution_bp)


@execution_bp.route("/cases/<int:case_id>/execution-plan", methods=["PUT"])
@actor_required
def submit_plan(case_id):
    data = json_body()
    result = plans.submit_plan(
        case_id,
        data.get("kind"),
        data.get("items"),
        current_actor(),
        notes=data.get("notes"),
    )
    return jsonify(result), 200


@execution_bp.route("/cases/<int:case_id>/execution-plan", methods=["GET"])
@actor_required
def get_plan(case_id):
    return jsonify(plans.get_plan(case_id)), 200


@execution_bp.route("/cases/<int:case_id>/execution-plan/approvals/<party>", methods=["POST"])
@actor_required
def approve_plan(case_id, party):
    return jsonify(plans.approve_plan(case_id, party, current_actor())), 200


@execution_bp.route("/cases/<int:case_id>/execution-plan/reject", methods=["POST"])
@actor_required
def reject_plan(case_id):
    data = json_body()
    return jsonify(plans.reject_plan(case_id, current_actor(), reason=data.get("reason"))), 200
