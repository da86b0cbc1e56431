"""
Fit-out Workflow Engine
Case domain models: the root aggregate of a client engagement.

Models:
    - Case:             one per engagement; lead until converted into a project
    - Boq:              bill of quantities feeding a quotation; frozen once a
                        quotation built from it is approved
    - CostCenter:       budget ledger created exactly once, at execution activation
    - CostCenterEntry:  append-only spend line against the cost center

Architecture:
    Case ──1:N──▶ Quotation ──1:N──▶ BidRound
    Case ──1:1──▶ ExecutionPlan
    Case ──1:1──▶ CostCenter ──1:N──▶ CostCenterEntry
    Case ──1:N──▶ ProcurementPlan
    Case ──1:N──▶ CaseTask / CaseActivity / CaseDocument

Lifecycle states (Case.status):
    lead → waiting_for_planning → planning_in_progress → planning_submitted
         → execution_active → completed
    planning_* → waiting_for_planning   (plan rejected)

Concurrency:
    Case, CostCenter carry a ``version`` column mapped as SQLAlchemy's
    ``version_id_col``; every UPDATE is compare-and-swap on it.
"""

from datetime import datetime, timezone
from decimal import Decimal

from fitout.models import db
from fitout.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

CASE_STATUSES = {
    "lead",
    "waiting_for_planning",
    "planning_in_progress",
    "planning_submitted",
    "execution_active",
    "completed",
}

CASE_TRANSITIONS = {
    "lead": ["waiting_for_planning"],
    "waiting_for_planning": ["planning_in_progress"],
    "planning_in_progress": ["planning_in_progress", "planning_submitted", "waiting_for_planning"],
    "planning_submitted": ["execution_active", "waiting_for_planning"],
    "execution_active": ["completed"],
    "completed": [],
}

SPEND_CATEGORIES = {"materials", "salaries", "expenses"}


def validate_case_transition(old_status, new_status):
    """Check if a case status transition is valid."""
    return new_status in CASE_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class Case(db.Model):
    """
    Root aggregate for one client engagement.

    ``is_project`` separates a won engagement from a pre-sale lead. The
    execution plan and cost center hang off the case one-to-one.
    """

    __tablename__ = "cases"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, comment="CASE-001, CASE-002, ...")
    title = db.Column(db.String(200), nullable=False)
    client_name = db.Column(db.String(200), nullable=True)
    client_id = db.Column(db.String(64), nullable=True, index=True, comment="Identity of the client channel")
    site_address = db.Column(db.Text, nullable=True)
    estimated_budget = db.Column(db.Numeric(14, 2), nullable=True)

    status = db.Column(db.String(30), nullable=False, default="lead", index=True)
    is_project = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    quotations = db.relationship(
        "Quotation", backref="case", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Quotation.id",
    )
    boqs = db.relationship("Boq", backref="case", lazy="dynamic", cascade="all, delete-orphan")
    execution_plan = db.relationship(
        "ExecutionPlan", backref="case", uselist=False, cascade="all, delete-orphan",
    )
    cost_center = db.relationship(
        "CostCenter", backref="case", uselist=False, cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "client_name": self.client_name,
            "client_id": self.client_id,
            "site_address": self.site_address,
            "estimated_budget": as_float(self.estimated_budget),
            "status": self.status,
            "is_project": self.is_project,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "completed_at": iso(self.completed_at),
            "version": self.version,
            "has_execution_plan": self.execution_plan is not None,
        }
        if include_children:
            result["execution_plan"] = self.execution_plan.to_dict() if self.execution_plan else None
            result["cost_center"] = self.cost_center.to_dict() if self.cost_center else None
        return result

    def __repr__(self):
        return f"<Case {self.id}: {self.code} [{self.status}]>"


class Boq(db.Model):
    """Bill of quantities. ``locked`` is irrevocable: once a quotation built
    from this BOQ is approved, the estimate is frozen."""

    __tablename__ = "boqs"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False, default="BOQ")
    lines = db.Column(db.JSON, nullable=False, default=list, comment="[{item_id, description, quantity, unit, rate}]")
    locked = db.Column(db.Boolean, nullable=False, default=False)
    referenced_by_quotation_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "title": self.title,
            "lines": self.lines or [],
            "locked": self.locked,
            "referenced_by_quotation_id": self.referenced_by_quotation_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Boq {self.id} case={self.case_id} locked={self.locked}>"


class CostCenter(db.Model):
    """
    Budget ledger for a Case, created exactly once at execution activation.

    Business rules:
    - ``case_id`` is UNIQUE: the store itself refuses a second initialisation.
    - Only the activation batch creates it; only ``record_spend`` mutates it.
    - remaining_amount == total_budget - spent_amount after every write.
    """

    __tablename__ = "cost_centers"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    total_budget = db.Column(db.Numeric(14, 2), nullable=False)
    spent_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    remaining_amount = db.Column(db.Numeric(14, 2), nullable=False)

    materials = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    salaries = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    expenses = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    initialized_by = db.Column(db.String(64), nullable=True)
    initialized_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    entries = db.relationship(
        "CostCenterEntry", backref="cost_center", lazy="dynamic",
        cascade="all, delete-orphan", order_by="CostCenterEntry.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "total_budget": as_float(self.total_budget),
            "spent_amount": as_float(self.spent_amount),
            "remaining_amount": as_float(self.remaining_amount),
            "materials": as_float(self.materials),
            "salaries": as_float(self.salaries),
            "expenses": as_float(self.expenses),
            "initialized_by": self.initialized_by,
            "initialized_at": iso(self.initialized_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }

    def __repr__(self):
        return f"<CostCenter case={self.case_id} spent={self.spent_amount}/{self.total_budget}>"


class CostCenterEntry(db.Model):
    """Append-only spend line. Never updated or deleted."""

    __tablename__ = "cost_center_entries"

    id = db.Column(db.Integer, primary_key=True)
    cost_center_id = db.Column(
        db.Integer, db.ForeignKey("cost_centers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    category = db.Column(db.String(20), nullable=False, comment="materials | salaries | expenses")
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.String(64), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "cost_center_id": self.cost_center_id,
            "category": self.category,
            "amount": as_float(self.amount),
            "description": self.description,
            "recorded_by": self.recorded_by,
            "recorded_at": iso(self.recorded_at),
        }
