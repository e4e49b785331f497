"""Initial billing schema: clients, projects, milestones, invoices, ledger, activity log.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(100)),
        sa.Column("address", sa.Text()),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("notes", sa.Text()),
        sa.Column("total_projects", sa.Integer(), server_default="0"),
        sa.Column("active_projects", sa.Integer(), server_default="0"),
        sa.Column("total_billed", sa.Numeric(14, 2), server_default="0"),
        sa.Column("total_paid", sa.Numeric(14, 2), server_default="0"),
        sa.Column("total_outstanding", sa.Numeric(14, 2), server_default="0"),
        sa.Column("stats_updated_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index("ix_clients_status", "clients", ["status"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_code", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.String(30), server_default="planned"),
        sa.Column("progress", sa.Integer(), server_default="0"),
        sa.Column("priority", sa.String(20), server_default="medium"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("deadline", sa.Date(), nullable=False),
        sa.Column("actual_end_date", sa.DateTime()),
        sa.Column("billing_type", sa.String(20), server_default="fixed"),
        sa.Column("budget", sa.Numeric(14, 2)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_projects_project_code", "projects", ["project_code"], unique=True)
    op.create_index("ix_projects_client_id", "projects", ["client_id"])
    op.create_index("ix_projects_status", "projects", ["status"])

    op.create_table(
        "project_milestones",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "project_id", sa.String(36),
            sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("deadline", sa.Date()),
        sa.Column("completed_date", sa.DateTime()),
        sa.Column("billable", sa.Boolean(), server_default=sa.true()),
        sa.Column("amount", sa.Numeric(14, 2), server_default="0"),
    )
    op.create_index("ix_project_milestones_project_id", "project_milestones", ["project_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column(
            "project_id", sa.String(36),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
        ),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("company_name", sa.String(255)),
        sa.Column("billing_address", sa.Text()),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("project_name", sa.String(255), nullable=False),
        sa.Column("project_code", sa.String(50)),
        sa.Column("billing_type", sa.String(20), server_default="fixed"),
        sa.Column("subtotal", sa.Numeric(14, 2), server_default="0"),
        sa.Column("discount_value", sa.Numeric(14, 2), server_default="0"),
        sa.Column("discount_type", sa.String(20), server_default="amount"),
        sa.Column("discount_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), server_default="18"),
        sa.Column("tax_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("total", sa.Numeric(14, 2), server_default="0"),
        sa.Column("paid_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("balance_due", sa.Numeric(14, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="draft"),
        sa.Column("invoice_date", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("payment_method", sa.String(30), server_default="Bank Transfer"),
        sa.Column("payment_terms", sa.String(255)),
        sa.Column("bank_details", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_project_id", "invoices", ["project_id"])
    # Bound the per-client rollup scan and the overdue sweep
    op.create_index("ix_invoices_client_active", "invoices", ["client_id", "is_active"])
    op.create_index("ix_invoices_status_due", "invoices", ["status", "due_date"])

    op.create_table(
        "invoice_line_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "invoice_id", sa.String(36),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("rate", sa.Numeric(14, 2), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
    )
    op.create_index("ix_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "invoice_id", sa.String(36),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("payment_date", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("method", sa.String(30), nullable=False),
        sa.Column("reference", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), server_default="completed"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
    )
    op.create_index("ix_invoice_payments_invoice_id", "invoice_payments", ["invoice_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36)),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(50)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("invoice_payments")
    op.drop_table("invoice_line_items")
    op.drop_table("invoices")
    op.drop_table("project_milestones")
    op.drop_table("projects")
    op.drop_table("clients")
