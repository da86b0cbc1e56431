"""
Fit-out Workflow Engine
Quotation domain models.

Models:
    - Quotation:      priced proposal for a Case, subject to procurement audit
    - QuotationItem:  ordered line { item_id, quantity, unit_price, discount_percent }

Lifecycle states (Quotation.audit_status):
    pending → approved | rejected     (both terminal)

A rejected quotation stays as history; the preparer submits a revision as a
new Quotation row rather than editing the rejected one.

Totals (subtotal, discount_amount, tax_amount, grand_total) are derived from
the items by ``compute_totals`` on every edit and never set independently.
"""

from datetime import datetime, timezone
from decimal import Decimal

from fitout.models import db
from fitout.utils.helpers import as_float, iso, money, to_decimal


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_STATUSES = {"pending", "approved", "rejected"}

AUDIT_TRANSITIONS = {
    "pending": ["approved", "rejected"],
    "approved": [],
    "rejected": [],
}


def validate_audit_transition(old_status, new_status):
    """Check if a quotation audit transition is valid."""
    return new_status in AUDIT_TRANSITIONS.get(old_status, [])


def compute_totals(items, tax_rate) -> dict:
    """Derive quotation totals from its lines.

    Per line: gross = qty * unit_price, discount = gross * pct / 100,
    tax = (gross - discount) * tax_rate. Sums are rounded half-up to cents,
    and grand_total = subtotal - discount_amount + tax_amount holds exactly.

    ``items`` may be QuotationItem rows or plain dicts with the same keys.
    """
    rate = to_decimal(tax_rate, "tax_rate")
    subtotal = Decimal("0")
    discount = Decimal("0")
    tax = Decimal("0")
    for item in items:
        qty = to_decimal(_field(item, "quantity"), "quantity")
        price = to_decimal(_field(item, "unit_price"), "unit_price")
        pct = to_decimal(_field(item, "discount_percent") or 0, "discount_percent")
        gross = qty * price
        line_discount = gross * pct / Decimal("100")
        subtotal += gross
        discount += line_discount
        tax += (gross - line_discount) * rate

    subtotal = money(subtotal)
    discount = money(discount)
    tax = money(tax)
    return {
        "subtotal": subtotal,
        "discount_amount": discount,
        "tax_amount": tax,
        "grand_total": subtotal - discount + tax,
    }


def _field(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name)


def _utcnow():
    return datetime.now(timezone.utc)


class Quotation(db.Model):
    """
    Priced proposal awaiting (or past) procurement audit.

    Business rules:
    - Created in ``pending`` by the quotation team; at least one item, every
      unit_price > 0.
    - Items may be replaced only while ``pending``.
    - Approval is one atomic batch: status flip, client-visible document,
      audit task completion, BOQ lock.
    - ``requires_discount_approval`` flags an overall discount above the
      configured threshold for the auditor's attention.
    """

    __tablename__ = "quotations"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    boq_id = db.Column(db.Integer, db.ForeignKey("boqs.id", ondelete="SET NULL"), nullable=True)
    title = db.Column(db.String(200), nullable=True)
    pdf_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    tax_rate = db.Column(db.Numeric(5, 4), nullable=False, default=Decimal("0.18"))
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    grand_total = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    requires_discount_approval = db.Column(db.Boolean, nullable=False, default=False)

    audit_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    audited_by = db.Column(db.String(64), nullable=True)
    audited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    prepared_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    items = db.relationship(
        "QuotationItem", backref="quotation", cascade="all, delete-orphan",
        order_by="QuotationItem.position",
    )

    def apply_totals(self):
        """Recompute derived totals from the current items."""
        totals = compute_totals(self.items, self.tax_rate)
        self.subtotal = totals["subtotal"]
        self.discount_amount = totals["discount_amount"]
        self.tax_amount = totals["tax_amount"]
        self.grand_total = totals["grand_total"]
        return totals

    def to_dict(self, include_items=True):
        result = {
            "id": self.id,
            "case_id": self.case_id,
            "boq_id": self.boq_id,
            "title": self.title,
            "pdf_url": self.pdf_url,
            "notes": self.notes,
            "tax_rate": as_float(self.tax_rate),
            "subtotal": as_float(self.subtotal),
            "discount_amount": as_float(self.discount_amount),
            "tax_amount": as_float(self.tax_amount),
            "grand_total": as_float(self.grand_total),
            "requires_discount_approval": self.requires_discount_approval,
            "audit_status": self.audit_status,
            "audited_by": self.audited_by,
            "audited_at": iso(self.audited_at),
            "rejection_reason": self.rejection_reason,
            "prepared_by": self.prepared_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<Quotation {self.id} case={self.case_id} [{self.audit_status}]>"


class QuotationItem(db.Model):
    """One ordered line of a quotation."""

    __tablename__ = "quotation_items"

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    item_id = db.Column(db.String(64), nullable=False, comment="Catalog item id")
    name = db.Column(db.String(200), nullable=True, comment="Catalog name snapshot")
    unit = db.Column(db.String(20), nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))

    @property
    def line_total(self):
        gross = self.quantity * self.unit_price
        return money(gross - gross * self.discount_percent / Decimal("100"))

    def to_dict(self):
        return {
            "id": self.id,
            "position": self.position,
            "item_id": self.item_id,
            "name": self.name,
            "unit": self.unit,
            "quantity": as_float(self.quantity),
            "unit_price": as_float(self.unit_price),
            "discount_percent": as_float(self.discount_percent),
            "line_total": as_float(self.line_total),
        }
