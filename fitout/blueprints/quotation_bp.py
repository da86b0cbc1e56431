"""
Quotation audit blueprint.

Endpoints:
    POST /api/v1/cases/<case_id>/quotations          submit (quotation team)
    GET  /api/v1/cases/<case_id>/quotations             (?status=)
    GET  /api/v1/quotations/pending-audit            auditor queue (?case_id=)
    GET  /api/v1/quotations/<id>
    PUT  /api/v1/quotations/<id>/items               edit while pending
    POST /api/v1/quotations/<id>/approve             procurement / super admin
    POST /api/v1/quotations/<id>/reject              body: {reason}
"""

from flask import Blueprint, jsonify, request

import fitout.services.quotation_audit_service as audit
from fitout.blueprints import current_actor, json_body
from fitout.middleware.identity import actor_required
from fitout.utils.errors import register_error_handlers

quotation_bp = Blueprint("quotations", __name__, url_prefix="/api/v1")
register_error_handlers(quotation_bp)


@quotation_bp.route("/cases/<int:case_id>/quotations", methods=["POST"])
@actor_required
def submit_quotation(case_id):
    data = json_body()
    result = audit.submit_quotation(
        case_id,
        data.get("items"),
        current_actor(),
        boq_id=data.get("boq_id"),
        title=data.get("title"),
        pdf_url=data.get("pdf_url"),
        notes=data.get("notes"),
        tax_rate=data.get("tax_rate"),
    )
    return jsonify(result), 201


@quotation_bp.route("/cases/<int:case_id>/quotations", methods=["GET"])
@actor_required
def list_quotations(case_id):
    return jsonify(audit.list_quotations(case_id, request.args.get("status"))), 200


@quotation_bp.route("/quotations/pending-audit", methods=["GET"])
@actor_required
def pending_audit():
    return jsonify(audit.list_pending_audit(request.args.get("case_id", type=int))), 200


@quotation_bp.route("/quotations/<int:quotation_id>", methods=["GET"])
@actor_required
def get_quotation(quotation_id):
    return jsonify(audit.get_quotation(quotation_id)), 200


@quotation_bp.route("/quotations/<int:quotation_id>/items", methods=["PUT"])
@actor_required
def update_items(quotation_id):
    data = json_body()
    return jsonify(audit.update_items(quotation_id, data.get("items"), current_actor())), 200


@quotation_bp.route("/quotations/<int:quotation_id>/approve", methods=["POST"])
@actor_required
def approve_quotation(quotation_id):
    return jsonify(audit.approve_quotation(quotation_id, current_actor())), 200


@quotation_bp.route("/quotations/<int:quotation_id>/reject", methods=["POST"])
@actor_required
def reject_quotation(quotation_id):
    data = json_body()
    return jsonify(audit.reject_quotation(quotation_id, current_actor(), data.get("reason"))), 200
