"""
Fit-out Workflow Engine
Task / activity / document models produced by workflow transitions.

Models:
    - CaseTask:      work item for the next actor in the chain
    - CaseActivity:  immutable, append-only human-readable activity line
    - CaseDocument:  document attached to a Case; client sees it only when
                     ``visible_to_client`` is set

Task lifecycle:
    pending → started → completed
    pending → completed
"""

from datetime import datetime, timezone

from fitout.models import db
from fitout.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

TASK_TYPES = {
    "procurement_audit",
    "vendor_bidding",
    "purchase_order",
    "execution_plan_approval",
    "procurement_scheduling",
}

TASK_STATUSES = {"pending", "started", "completed"}

OPEN_TASK_STATUSES = ("pending", "started")

TASK_TRANSITIONS = {
    "pending": ["started", "completed"],
    "started": ["completed"],
    "completed": [],
}


def validate_task_transition(old_status, new_status):
    """Check if a task status transition is valid."""
    return new_status in TASK_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class CaseTask(db.Model):
    """A task handed to the next role in the workflow chain."""

    __tablename__ = "case_tasks"
    __table_args__ = (
        db.Index("ix_case_task_type_status", "case_id", "task_type", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    task_type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(12), nullable=False, default="pending")
    assigned_role = db.Column(db.String(30), nullable=True)
    entity_type = db.Column(db.String(30), nullable=True, comment="quotation | bid_round | execution_plan")
    entity_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "task_type": self.task_type,
            "title": self.title,
            "status": self.status,
            "assigned_role": self.assigned_role,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<CaseTask {self.id} {self.task_type} [{self.status}]>"


class CaseActivity(db.Model):
    """
    Immutable activity line for one transition.

    One row per action; ``details`` carries structured context for the
    activity feed (amounts, vendor ids, reasons).
    """

    __tablename__ = "case_activities"
    __table_args__ = (
        db.Index("idx_case_activity_case_ts", "case_id", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action = db.Column(db.String(60), nullable=False, comment="quotation.approve | bid_round.lock | ...")
    message = db.Column(db.Text, nullable=False)
    entity_type = db.Column(db.String(30), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    actor_id = db.Column(db.String(64), nullable=False, default="system")
    actor_name = db.Column(db.String(150), nullable=True)
    actor_role = db.Column(db.String(30), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "action": self.action,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
            "details": self.details or {},
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<CaseActivity {self.id}: {self.action} case={self.case_id}>"


class CaseDocument(db.Model):
    """Document attached to a case. Only approved quotations are attached
    with ``visible_to_client=True`` by the workflow."""

    __tablename__ = "case_documents"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    doc_type = db.Column(db.String(30), nullable=False, default="quotation")
    name = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(500), nullable=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id", ondelete="SET NULL"), nullable=True)
    amount = db.Column(db.Numeric(14, 2), nullable=True)
    visible_to_client = db.Column(db.Boolean, nullable=False, default=False)
    approval_status = db.Column(db.String(20), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    uploaded_by = db.Column(db.String(64), nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "doc_type": self.doc_type,
            "name": self.name,
            "file_url": self.file_url,
            "quotation_id": self.quotation_id,
            "amount": as_float(self.amount),
            "visible_to_client": self.visible_to_client,
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "uploaded_by": self.uploaded_by,
            "uploaded_at": iso(self.uploaded_at),
        }
