"""
Fit-out Workflow Engine
Execution plan model: the Case's embedded singleton plan.

Approval is a three-party sign-off. Each party has its own explicit state
machine instead of a loose boolean:

    ApprovalState:  pending → approved        (one-way)

Plan-level status:

    PlanStatus:     draft → awaiting_approval → locked
                    draft | awaiting_approval → (rejected: the row is deleted)

    draft              submitted, preparer has not signed; preparer may still edit
    awaiting_approval  preparer signed; contents frozen; admin/client may sign
    locked             all three parties signed; cost center initialised

Activation rule: preparer AND admin AND client. A Case has a cost center iff
its plan is locked.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from fitout.models import db
from fitout.models.plan_schedule import parse_schedule, schedule_total
from fitout.utils.helpers import as_float, iso


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_APPROVAL = "awaiting_approval"
    LOCKED = "locked"


class ApprovalParty(str, Enum):
    PREPARER = "preparer"
    ADMIN = "admin"
    CLIENT = "client"


APPROVAL_PARTIES = tuple(p.value for p in ApprovalParty)

ACTIVATION_PARTIES = frozenset(ApprovalParty)

APPROVAL_TRANSITIONS = {
    ApprovalState.PENDING.value: [ApprovalState.APPROVED.value],
    ApprovalState.APPROVED.value: [],
}


def validate_approval_transition(old_state, new_state):
    """Check if a per-party approval transition is valid."""
    return new_state in APPROVAL_TRANSITIONS.get(old_state, [])


def _utcnow():
    return datetime.now(timezone.utc)


class ExecutionPlan(db.Model):
    """
    The approved schedule/material/labor plan for a Case.

    Business rules:
    - One per case (``case_id`` UNIQUE); rejection deletes the row outright.
    - ``schedule_kind`` picks the variant (days | phases); ``schedule`` is the
      raw JSON, parsed through ``plan_schedule.parse_schedule`` on read.
    - ``total_budget`` is computed from the schedule at submission.
    - Each party's state only moves pending → approved.
    """

    __tablename__ = "execution_plans"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    schedule_kind = db.Column(db.String(10), nullable=False, comment="days | phases")
    schedule = db.Column(db.JSON, nullable=False, default=list)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    total_budget = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=PlanStatus.DRAFT.value)
    locked = db.Column(db.Boolean, nullable=False, default=False)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    preparer_state = db.Column(db.String(10), nullable=False, default=ApprovalState.PENDING.value)
    preparer_by = db.Column(db.String(64), nullable=True)
    preparer_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_state = db.Column(db.String(10), nullable=False, default=ApprovalState.PENDING.value)
    admin_by = db.Column(db.String(64), nullable=True)
    admin_at = db.Column(db.DateTime(timezone=True), nullable=True)
    client_state = db.Column(db.String(10), nullable=False, default=ApprovalState.PENDING.value)
    client_by = db.Column(db.String(64), nullable=True)
    client_at = db.Column(db.DateTime(timezone=True), nullable=True)

    prepared_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # ── Approval helpers ─────────────────────────────────────────────────

    def state_of(self, party: ApprovalParty) -> str:
        return getattr(self, f"{ApprovalParty(party).value}_state")

    def is_approved(self, party: ApprovalParty) -> bool:
        return self.state_of(party) == ApprovalState.APPROVED.value

    def mark_approved(self, party: ApprovalParty, actor_id: str, when: datetime) -> None:
        """Stamp the approval; callers check validate_approval_transition first."""
        prefix = ApprovalParty(party).value
        setattr(self, f"{prefix}_state", ApprovalState.APPROVED.value)
        setattr(self, f"{prefix}_by", actor_id)
        setattr(self, f"{prefix}_at", when)

    @property
    def activation_ready(self) -> bool:
        return all(self.is_approved(p) for p in ACTIVATION_PARTIES)

    @property
    def approvals(self) -> dict:
        return {
            party: {
                "state": getattr(self, f"{party}_state"),
                "by": getattr(self, f"{party}_by"),
                "at": iso(getattr(self, f"{party}_at")),
            }
            for party in APPROVAL_PARTIES
        }

    def parsed_schedule(self):
        return parse_schedule(self.schedule_kind, self.schedule)

    def computed_total(self) -> Decimal:
        return schedule_total(self.parsed_schedule())

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "schedule_kind": self.schedule_kind,
            "schedule": self.schedule or [],
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "total_budget": as_float(self.total_budget),
            "notes": self.notes,
            "status": self.status,
            "locked": self.locked,
            "locked_at": iso(self.locked_at),
            "approvals": self.approvals,
            "prepared_by": self.prepared_by,
            "submitted_at": iso(self.submitted_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }

    def __repr__(self):
        return f"<ExecutionPlan case={self.case_id} [{self.status}]>"
