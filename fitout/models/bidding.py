"""
Fit-out Workflow Engine
Vendor bidding domain models.

Models:
    - BidRound:   multi-vendor price collection for one approved quotation
    - VendorBid:  a vendor's live bid in a round (at most one per vendor)

Lifecycle (BidRound):
    open ─▶ vendor selected ─▶ admin approved ─▶ locked
    status open | closed is an orthogonal visibility flag; lock also closes.

Phase derivation (``BidRound.phase``):
    locked_at set                         → locked
    admin_approved_at set                 → admin_approved
    selected_vendor_id set                → vendor_selected
    otherwise                             → bidding

Rules:
    - locked_at implies selected_vendor_id and admin_approved_at.
    - Changing selected_vendor_id clears admin_approved_at/by.
    - After lock, bids, selection and invitations are frozen.
    - item_lines is a snapshot taken at round creation; later quotation edits
      never change what vendors bid against.
"""

from datetime import datetime, timezone

from fitout.models import db
from fitout.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

ROUND_STATUSES = {"open", "closed"}


def _utcnow():
    return datetime.now(timezone.utc)


class BidRound(db.Model):
    """One bidding round. Versioned: concurrent selection/approval writes
    surface as a conflict instead of silently overwriting each other."""

    __tablename__ = "bid_rounds"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    item_lines = db.Column(
        db.JSON, nullable=False, default=list,
        comment="Snapshot [{item_id, name, unit, quantity, rate}] taken at creation",
    )
    reference_total = db.Column(db.Numeric(14, 2), nullable=True, comment="Snapshot price to beat")
    invited_vendor_ids = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(10), nullable=False, default="open", index=True)
    selected_vendor_id = db.Column(db.String(64), nullable=True)
    selected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    selected_by = db.Column(db.String(64), nullable=True)
    admin_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_approved_by = db.Column(db.String(64), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by = db.Column(db.String(64), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    bids = db.relationship(
        "VendorBid", backref="round", cascade="all, delete-orphan",
        order_by="VendorBid.id",
    )
    quotation = db.relationship("Quotation")

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def phase(self) -> str:
        if self.locked_at is not None:
            return "locked"
        if self.admin_approved_at is not None:
            return "admin_approved"
        if self.selected_vendor_id:
            return "vendor_selected"
        return "bidding"

    def bid_for(self, vendor_id):
        for bid in self.bids:
            if bid.vendor_id == vendor_id:
                return bid
        return None

    def to_dict(self, include_bids=True):
        result = {
            "id": self.id,
            "case_id": self.case_id,
            "quotation_id": self.quotation_id,
            "item_lines": self.item_lines or [],
            "reference_total": as_float(self.reference_total),
            "invited_vendor_ids": self.invited_vendor_ids or [],
            "status": self.status,
            "phase": self.phase,
            "selected_vendor_id": self.selected_vendor_id,
            "selected_at": iso(self.selected_at),
            "selected_by": self.selected_by,
            "admin_approved_at": iso(self.admin_approved_at),
            "admin_approved_by": self.admin_approved_by,
            "locked_at": iso(self.locked_at),
            "locked_by": self.locked_by,
            "closed_at": iso(self.closed_at),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }
        if include_bids:
            result["bids"] = [b.to_dict() for b in self.bids]
        return result

    def __repr__(self):
        return f"<BidRound {self.id} case={self.case_id} [{self.status}/{self.phase}]>"


class VendorBid(db.Model):
    """A vendor's live bid. Resubmission replaces it in place (last write
    wins per vendor), enforced by the (round_id, vendor_id) unique key."""

    __tablename__ = "vendor_bids"
    __table_args__ = (
        db.UniqueConstraint("round_id", "vendor_id", name="uq_vendor_bid_round_vendor"),
    )

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(
        db.Integer, db.ForeignKey("bid_rounds.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    vendor_id = db.Column(db.String(64), nullable=False)
    vendor_name = db.Column(db.String(200), nullable=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    delivery_days = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    revision = db.Column(db.Integer, nullable=False, default=1, comment="Times this vendor has (re)submitted")
    submitted_by = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "round_id": self.round_id,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "total_amount": as_float(self.total_amount),
            "delivery_days": self.delivery_days,
            "notes": self.notes,
            "revision": self.revision,
            "submitted_by": self.submitted_by,
            "submitted_at": iso(self.submitted_at),
        }
