"""initial_fitout_schema

Creates the fit-out workflow tables:
  - cases, boqs                         case lifecycle and bills of quantities
  - quotations, quotation_items         quotation audit
  - bid_rounds, vendor_bids             vendor bidding
  - execution_plans                     three-party plan approval
  - cost_centers, cost_center_entries   execution spend ledger
  - procurement_plans                   material procurement ledger
  - case_tasks, case_activities, case_documents

Tables are created only when missing so the revision can be stamped onto a
development database that already ran db.create_all().

Revision ID: a1f3c0d9e201
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1f3c0d9e201'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _money(name, nullable=False, **kw):
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, **kw)


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Cases ─────────────────────────────────────────────────────────────
    if "cases" not in existing:
        op.create_table(
            "cases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=20), nullable=False, comment="CASE-001, CASE-002, ..."),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("client_name", sa.String(length=200), nullable=True),
            sa.Column("client_id", sa.String(length=64), nullable=True,
                      comment="Identity of the client channel"),
            sa.Column("site_address", sa.Text(), nullable=True),
            _money("estimated_budget", nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="lead"),
            sa.Column("is_project", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            _ts("completed_at", nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )
        op.create_index("ix_cases_client_id", "cases", ["client_id"])
        op.create_index("ix_cases_status", "cases", ["status"])

    if "boqs" not in existing:
        op.create_table(
            "boqs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False, server_default="BOQ"),
            sa.Column("lines", sa.JSON(), nullable=False,
                      comment="[{item_id, description, quantity, unit, rate}]"),
            sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("referenced_by_quotation_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_boqs_case_id", "boqs", ["case_id"])

    # ── Quotation audit ───────────────────────────────────────────────────
    if "quotations" not in existing:
        op.create_table(
            "quotations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("boq_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=200), nullable=True),
            sa.Column("pdf_url", sa.String(length=500), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("tax_rate", sa.Numeric(5, 4), nullable=False, server_default="0.18"),
            _money("subtotal", server_default="0"),
            _money("discount_amount", server_default="0"),
            _money("tax_amount", server_default="0"),
            _money("grand_total", server_default="0"),
            sa.Column("requires_discount_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("audit_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("audited_by", sa.String(length=64), nullable=True),
            _ts("audited_at", nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("prepared_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["boq_id"], ["boqs.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotations_case_id", "quotations", ["case_id"])
        op.create_index("ix_quotations_audit_status", "quotations", ["audit_status"])

    if "quotation_items" not in existing:
        op.create_table(
            "quotation_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("quotation_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("item_id", sa.String(length=64), nullable=False, comment="Catalog item id"),
            sa.Column("name", sa.String(length=200), nullable=True, comment="Catalog name snapshot"),
            sa.Column("unit", sa.String(length=20), nullable=True),
            sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
            _money("unit_price"),
            sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotation_items_quotation_id", "quotation_items", ["quotation_id"])

    # ── Vendor bidding ────────────────────────────────────────────────────
    if "bid_rounds" not in existing:
        op.create_table(
            "bid_rounds",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("quotation_id", sa.Integer(), nullable=False),
            sa.Column("item_lines", sa.JSON(), nullable=False,
                      comment="Snapshot [{item_id, name, unit, quantity, rate}] taken at creation"),
            _money("reference_total", nullable=True, comment="Snapshot price to beat"),
            sa.Column("invited_vendor_ids", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="open"),
            sa.Column("selected_vendor_id", sa.String(length=64), nullable=True),
            _ts("selected_at", nullable=True),
            sa.Column("selected_by", sa.String(length=64), nullable=True),
            _ts("admin_approved_at", nullable=True),
            sa.Column("admin_approved_by", sa.String(length=64), nullable=True),
            _ts("locked_at", nullable=True),
            sa.Column("locked_by", sa.String(length=64), nullable=True),
            _ts("closed_at", nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_bid_rounds_case_id", "bid_rounds", ["case_id"])
        op.create_index("ix_bid_rounds_quotation_id", "bid_rounds", ["quotation_id"])
        op.create_index("ix_bid_rounds_status", "bid_rounds", ["status"])

    if "vendor_bids" not in existing:
        op.create_table(
            "vendor_bids",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("round_id", sa.Integer(), nullable=False),
            sa.Column("vendor_id", sa.String(length=64), nullable=False),
            sa.Column("vendor_name", sa.String(length=200), nullable=True),
            _money("total_amount"),
            sa.Column("delivery_days", sa.Integer(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("revision", sa.Integer(), nullable=False, server_default="1",
                      comment="Times this vendor has (re)submitted"),
            sa.Column("submitted_by", sa.String(length=64), nullable=True),
            _ts("submitted_at"),
            sa.ForeignKeyConstraint(["round_id"], ["bid_rounds.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("round_id", "vendor_id", name="uq_vendor_bid_round_vendor"),
        )
        op.create_index("ix_vendor_bids_round_id", "vendor_bids", ["round_id"])

    # ── Execution plan & cost center ──────────────────────────────────────
    if "execution_plans" not in existing:
        op.create_table(
            "execution_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("schedule_kind", sa.String(length=10), nullable=False, comment="days | phases"),
            sa.Column("schedule", sa.JSON(), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            _money("total_budget", server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("locked_at", nullable=True),
            *[
                col
                for party in ("preparer", "admin", "client")
                for col in (
                    sa.Column(f"{party}_state", sa.String(length=10), nullable=False, server_default="pending"),
                    sa.Column(f"{party}_by", sa.String(length=64), nullable=True),
                    _ts(f"{party}_at", nullable=True),
                )
            ],
            sa.Column("prepared_by", sa.String(length=64), nullable=True),
            _ts("submitted_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_execution_plans_case_id", "execution_plans", ["case_id"], unique=True)

    if "cost_centers" not in existing:
        op.create_table(
            "cost_centers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            _money("total_budget"),
            _money("spent_amount", server_default="0"),
            _money("remaining_amount"),
            _money("materials", server_default="0"),
            _money("salaries", server_default="0"),
            _money("expenses", server_default="0"),
            sa.Column("initialized_by", sa.String(length=64), nullable=True),
            _ts("initialized_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_cost_centers_case_id", "cost_centers", ["case_id"], unique=True)

    if "cost_center_entries" not in existing:
        op.create_table(
            "cost_center_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("cost_center_id", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=20), nullable=False,
                      comment="materials | salaries | expenses"),
            _money("amount"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("recorded_by", sa.String(length=64), nullable=True),
            _ts("recorded_at"),
            sa.ForeignKeyConstraint(["cost_center_id"], ["cost_centers.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_cost_center_entries_cost_center_id", "cost_center_entries", ["cost_center_id"])

    # ── Procurement ledger ────────────────────────────────────────────────
    if "procurement_plans" not in existing:
        op.create_table(
            "procurement_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("catalog_item_id", sa.String(length=64), nullable=False),
            sa.Column("item_name", sa.String(length=200), nullable=True),
            sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
            sa.Column("required_on", sa.Date(), nullable=False),
            sa.Column("work_description", sa.Text(), nullable=True,
                      comment="Schedule item the material came from"),
            sa.Column("vendor_id", sa.String(length=64), nullable=False),
            sa.Column("vendor_name", sa.String(length=200), nullable=True),
            sa.Column("expected_delivery_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(length=12), nullable=False, server_default="planned"),
            _ts("delivered_at", nullable=True),
            sa.Column("delivered_by", sa.String(length=64), nullable=True),
            sa.Column("purchase_invoice_id", sa.String(length=64), nullable=True),
            _ts("invoiced_at", nullable=True),
            sa.Column("invoiced_by", sa.String(length=64), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_id", "catalog_item_id", "quantity", "required_on",
                                name="uq_procurement_plan_dedup_key"),
        )
        op.create_index("ix_procurement_plans_case_id", "procurement_plans", ["case_id"])
        op.create_index("ix_procurement_plans_status", "procurement_plans", ["status"])
        op.create_index("ix_procurement_vendor_status", "procurement_plans", ["vendor_id", "status"])

    # ── Tasks, activity log, documents ────────────────────────────────────
    if "case_tasks" not in existing:
        op.create_table(
            "case_tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("task_type", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("status", sa.String(length=12), nullable=False, server_default="pending"),
            sa.Column("assigned_role", sa.String(length=30), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True,
                      comment="quotation | bid_round | execution_plan"),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("started_at", nullable=True),
            _ts("completed_at", nullable=True),
            sa.Column("completed_by", sa.String(length=64), nullable=True),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_case_tasks_case_id", "case_tasks", ["case_id"])
        op.create_index("ix_case_task_type_status", "case_tasks", ["case_id", "task_type", "status"])

    if "case_activities" not in existing:
        op.create_table(
            "case_activities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False,
                      comment="quotation.approve | bid_round.lock | ..."),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("actor_id", sa.String(length=64), nullable=False, server_default="system"),
            sa.Column("actor_name", sa.String(length=150), nullable=True),
            sa.Column("actor_role", sa.String(length=30), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            _ts("timestamp"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_case_activities_case_id", "case_activities", ["case_id"])
        op.create_index("idx_case_activity_case_ts", "case_activities", ["case_id", "timestamp"])

    if "case_documents" not in existing:
        op.create_table(
            "case_documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("doc_type", sa.String(length=30), nullable=False, server_default="quotation"),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("file_url", sa.String(length=500), nullable=True),
            sa.Column("quotation_id", sa.Integer(), nullable=True),
            _money("amount", nullable=True),
            sa.Column("visible_to_client", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approval_status", sa.String(length=20), nullable=True),
            sa.Column("approved_by", sa.String(length=64), nullable=True),
            _ts("approved_at", nullable=True),
            sa.Column("uploaded_by", sa.String(length=64), nullable=True),
            _ts("uploaded_at"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_case_documents_case_id", "case_documents", ["case_id"])


def downgrade():
    for table in (
        "case_documents", "case_activities", "case_tasks",
        "procurement_plans", "cost_center_entries", "cost_centers", "execution_plans",
        "vendor_bids", "bid_rounds", "quotation_items", "quotations", "boqs", "cases",
    ):
        op.drop_table(table)
