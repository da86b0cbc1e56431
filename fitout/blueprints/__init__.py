"""
Fit-out Workflow Engine
Blueprint registry and request-parsing helpers shared by the API blueprints.
"""

from flask import g, request

from fitout.core.exceptions import ValidationError


def json_body() -> dict:
    """Return the JSON object body, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_actor():
    """The acting user resolved by ``fitout.middleware.identity``."""
    return g.actor


def all_blueprints():
    """Every API blueprint, in registration order."""
    from fitout.blueprints.bidding_bp import bidding_bp
    from fitout.blueprints.case_bp import case_bp
    from fitout.blueprints.execution_bp import execution_bp
    from fitout.blueprints.health_bp import health_bp
    from fitout.blueprints.procurement_bp import procurement_bp
    from fitout.blueprints.quotation_bp import quotation_bp

    return [health_bp, case_bp, quotation_bp, bidding_bp, execution_bp, procurement_bp]
