"""
Fit-out Workflow Engine
Procurement scheduling ledger model.

Models:
    - ProcurementPlan: a scheduled delivery of one material line from an
      approved execution plan, with its own delivery lifecycle.

Lifecycle states (ProcurementPlan.status), strictly forward, one owner each:
    planned   → delivered   (procurement)
    delivered → invoiced    (accounts)

Deduplication key: (case_id, catalog_item_id, quantity, required_on). A plan
material line is only eligible for scheduling while no ledger row shares the
key; the UNIQUE constraint makes the store enforce it too.
"""

from datetime import datetime, timezone

from fitout.models import db
from fitout.utils.helpers import as_float, iso, parse_date, to_quantity


# ── Constants ────────────────────────────────────────────────────────────────

PROCUREMENT_STATUSES = {"planned", "delivered", "invoiced"}

PROCUREMENT_TRANSITIONS = {
    "planned": ["delivered"],
    "delivered": ["invoiced"],
    "invoiced": [],
}


def validate_procurement_transition(old_status, new_status):
    """Check if a procurement plan transition is valid."""
    return new_status in PROCUREMENT_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class ProcurementPlan(db.Model):
    """Append-only ledger row; only ``status`` and its stamps ever change."""

    __tablename__ = "procurement_plans"
    __table_args__ = (
        db.UniqueConstraint(
            "case_id", "catalog_item_id", "quantity", "required_on",
            name="uq_procurement_plan_dedup_key",
        ),
        db.Index("ix_procurement_vendor_status", "vendor_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    catalog_item_id = db.Column(db.String(64), nullable=False)
    item_name = db.Column(db.String(200), nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    required_on = db.Column(db.Date, nullable=False)
    work_description = db.Column(db.Text, nullable=True, comment="Schedule item the material came from")

    vendor_id = db.Column(db.String(64), nullable=False)
    vendor_name = db.Column(db.String(200), nullable=True)
    expected_delivery_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(12), nullable=False, default="planned", index=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by = db.Column(db.String(64), nullable=True)
    purchase_invoice_id = db.Column(db.String(64), nullable=True)
    invoiced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoiced_by = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def dedup_key(self):
        return make_dedup_key(self.catalog_item_id, self.quantity, self.required_on)

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "catalog_item_id": self.catalog_item_id,
            "item_name": self.item_name,
            "quantity": as_float(self.quantity),
            "required_on": iso(self.required_on),
            "work_description": self.work_description,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "expected_delivery_date": iso(self.expected_delivery_date),
            "status": self.status,
            "delivered_at": iso(self.delivered_at),
            "delivered_by": self.delivered_by,
            "purchase_invoice_id": self.purchase_invoice_id,
            "invoiced_at": iso(self.invoiced_at),
            "invoiced_by": self.invoiced_by,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "version": self.version,
        }

    def __repr__(self):
        return f"<ProcurementPlan {self.id} {self.catalog_item_id} x{self.quantity} [{self.status}]>"


def make_dedup_key(catalog_item_id, quantity, required_on) -> tuple:
    """Normalised (catalog_item_id, quantity, required_on-date) key.

    Quantity is rounded to the stored 3-place scale and normalised, so 2,
    2.0 and Decimal("2.000") compare equal and a plan line of 2.5555 matches
    the 2.556 its ledger row reads back.
    """
    qty = to_quantity(quantity).normalize()
    return (str(catalog_item_id), qty, parse_date(required_on))
