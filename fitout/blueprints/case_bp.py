"""
Case blueprint: case lifecycle, BOQ, task/activity/document feeds, cost center.

Endpoints:
    POST /api/v1/cases                               create a lead
    GET  /api/v1/cases                               list (?status=)
    GET  /api/v1/cases/<id>                          detail with plan + cost center
    POST /api/v1/cases/<id>/convert                  lead → project
    POST /api/v1/cases/<id>/complete                 execution_active → completed
    GET  /api/v1/cases/<id>/tasks                    (?status=)
    POST /api/v1/tasks/<task_id>/start               assigned role picks a task up
    GET  /api/v1/cases/<id>/activities
    GET  /api/v1/cases/<id>/documents                client sees client-visible only
    POST /api/v1/cases/<id>/boqs
    PUT  /api/v1/boqs/<boq_id>
    GET  /api/v1/cases/<id>/cost-center
    POST /api/v1/cases/<id>/cost-center/spend

Service layer owns all business logic and commits.
"""

from flask import Blueprint, jsonify, request

import fitout.services.activity_service as activities
import fitout.services.case_service as cases
import fitout.services.cost_center_service as cost_centers
from fitout.blueprints import current_actor, json_body
from fitout.middleware.identity import actor_required
from fitout.models.case import Case
from fitout.models.roles import Role
from fitout.services.helpers.unit_of_work import get_or_raise
from fitout.utils.errors import register_error_handlers

case_bp = Blueprint("cases", __name__, url_prefix="/api/v1")
register_error_handlers(case_bp)


@case_bp.route("/cases", methods=["POST"])
@actor_required
def create_case():
    data = json_body()
    result = cases.create_case(
        data.get("title"),
        current_actor(),
        client_name=data.get("client_name"),
        client_id=data.get("client_id"),
        site_address=data.get("site_address"),
        estimated_budget=data.get("estimated_budget"),
    )
    return jsonify(result), 201


@case_bp.route("/cases", methods=["GET"])
@actor_required
def list_cases():
    return jsonify(cases.list_cases(request.args.get("status"))), 200


@case_bp.route("/cases/<int:case_id>", methods=["GET"])
@actor_required
def get_case(case_id):
    return jsonify(cases.get_case(case_id)), 200


@case_bp.route("/cases/<int:case_id>/convert", methods=["POST"])
@actor_required
def convert_case(case_id):
    return jsonify(cases.convert_to_project(case_id, current_actor())), 200


@case_bp.route("/cases/<int:case_id>/complete", methods=["POST"])
@actor_required
def complete_case(case_id):
    return jsonify(cases.complete_case(case_id, current_actor())), 200


# ── Feeds ────────────────────────────────────────────────────────────────────


@case_bp.route("/cases/<int:case_id>/tasks", methods=["GET"])
@actor_required
def list_tasks(case_id):
    get_or_raise(Case, case_id)
    return jsonify(activities.list_tasks(case_id, request.args.get("status"))), 200


@case_bp.route("/tasks/<int:task_id>/start", methods=["POST"])
@actor_required
def start_task(task_id):
    return jsonify(activities.start_task(task_id, current_actor())), 200


@case_bp.route("/cases/<int:case_id>/activities", methods=["GET"])
@actor_required
def list_activities(case_id):
    get_or_raise(Case, case_id)
    limit = min(request.args.get("limit", 100, type=int) or 100, 500)
    return jsonify(activities.list_activities(case_id, limit=limit)), 200


@case_bp.route("/cases/<int:case_id>/documents", methods=["GET"])
@actor_required
def list_documents(case_id):
    get_or_raise(Case, case_id)
    client_view = current_actor().role == Role.CLIENT
    return jsonify(activities.list_documents(case_id, client_view=client_view)), 200


# ── BOQ ──────────────────────────────────────────────────────────────────────


@case_bp.route("/cases/<int:case_id>/boqs", methods=["POST"])
@actor_required
def create_boq(case_id):
    data = json_body()
    result = cases.create_boq(case_id, data.get("lines") or [], current_actor(), title=data.get("title"))
    return jsonify(result), 201


@case_bp.route("/boqs/<int:boq_id>", methods=["PUT"])
@actor_required
def update_boq(boq_id):
    data = json_body()
    return jsonify(cases.update_boq(boq_id, data.get("lines") or [], current_actor())), 200


# ── Cost center ──────────────────────────────────────────────────────────────


@case_bp.route("/cases/<int:case_id>/cost-center", methods=["GET"])
@actor_required
def get_cost_center(case_id):
    return jsonify(cost_centers.get_cost_center(case_id)), 200


@case_bp.route("/cases/<int:case_id>/cost-center/spend", methods=["POST"])
@actor_required
def record_spend(case_id):
    data = json_body()
    result = cost_centers.record_spend(
        case_id,
        data.get("amount"),
        data.get("category"),
        current_actor(),
        description=data.get("description"),
    )
    return jsonify(result), 201
