"""
Shared pytest fixtures for the fit-out workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - actors: one Actor per role
    - auth_headers: identity headers for the HTTP tests
    - case / approved_quotation / project_case / planned_case / active_case:
      a Case walked to each stage through the services
"""

from types import SimpleNamespace

import pytest

from fitout import create_app
from fitout.models import db as _db
from fitout.models.roles import Actor, Role
from fitout.services import change_feed
from fitout.services import case_service, execution_plan_service, quotation_audit_service

CLIENT_ID = "client-1"

# Two days, three material lines, total 25 000 + 75 000 = 100 000
PLAN_DAYS = [
    {
        "date": "2026-11-02",
        "work_description": "Demolition and debris removal",
        "labor_cost": 20000,
        "material_cost": 5000,
        "materials": [
            {"catalog_item_id": "CEMENT-50", "item_name": "Cement 50kg",
             "quantity": 10, "required_on": "2026-11-01"},
        ],
    },
    {
        "date": "2026-11-03",
        "work_description": "Flooring",
        "labor_cost": 15000,
        "material_cost": 60000,
        "materials": [
            {"catalog_item_id": "TILE-01", "item_name": "Vitrified tile 600x600",
             "quantity": 120, "required_on": "2026-11-02"},
            {"catalog_item_id": "CEMENT-50", "item_name": "Cement 50kg",
             "quantity": 5, "required_on": "2026-11-02"},
        ],
    },
]

PLAN_TOTAL = 100000.0


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        change_feed.clear_subscribers()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity ─────────────────────────────────────────────────────────────


@pytest.fixture()
def actors():
    """One acting user per role. ``vendor(id)`` builds a vendor actor."""
    return SimpleNamespace(
        sales=Actor(id="u-sales", role=Role.SALES, name="Sam Sales"),
        quoter=Actor(id="u-quote", role=Role.QUOTATION_TEAM, name="Quinn Quotes"),
        procurement=Actor(id="u-proc", role=Role.PROCUREMENT, name="Priya Procurement"),
        admin=Actor(id="u-admin", role=Role.SUPER_ADMIN, name="Ada Admin"),
        execution=Actor(id="u-exec", role=Role.EXECUTION_TEAM, name="Ezra Execution"),
        client=Actor(id=CLIENT_ID, role=Role.CLIENT, name="Chandra Client"),
        accounts=Actor(id="u-acc", role=Role.ACCOUNTS, name="Asha Accounts"),
        vendor=lambda vendor_id: Actor(id=vendor_id, role=Role.VENDOR, name=f"Vendor {vendor_id}"),
    )


@pytest.fixture()
def auth_headers():
    """Build the identity headers the gateway would forward for ``actor``."""

    def _headers(actor):
        return {
            "X-User-Id": actor.id,
            "X-User-Name": actor.name,
            "X-User-Role": actor.role.value,
        }

    return _headers


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def plan_days():
    return [dict(day, materials=[dict(m) for m in day["materials"]]) for day in PLAN_DAYS]


@pytest.fixture()
def case(actors):
    """A fresh lead owned by client-1."""
    return case_service.create_case(
        "Office fit-out, 3rd floor",
        actors.sales,
        client_name="Acme Corp",
        client_id=CLIENT_ID,
        site_address="12 MG Road, Bengaluru",
        estimated_budget=150000,
    )


@pytest.fixture()
def approved_quotation(case, actors):
    """Quotation for 2 x 500 at 18% tax, approved by procurement."""
    quotation = quotation_audit_service.submit_quotation(
        case["id"],
        [{"item_id": "TILE-01", "name": "Vitrified tile", "quantity": 2, "unit_price": 500}],
        actors.quoter,
    )
    return quotation_audit_service.approve_quotation(quotation["id"], actors.procurement)


@pytest.fixture()
def project_case(case, approved_quotation, actors):
    """Case converted to a project, waiting for planning."""
    return case_service.convert_to_project(case["id"], actors.sales)


@pytest.fixture()
def planned_case(project_case, plan_days, actors):
    """Project with a submitted (draft) day-by-day plan."""
    execution_plan_service.submit_plan(project_case["id"], "days", plan_days, actors.execution)
    return case_service.get_case(project_case["id"])


@pytest.fixture()
def active_case(planned_case, actors):
    """All three parties signed: execution active, cost center funded."""
    case_id = planned_case["id"]
    execution_plan_service.approve_plan(case_id, "preparer", actors.execution)
    execution_plan_service.approve_plan(case_id, "admin", actors.admin)
    execution_plan_service.approve_plan(case_id, "client", actors.client)
    return case_service.get_case(case_id)
