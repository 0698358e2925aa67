"""profit iq core schema

Revision ID: 20261018_000001
Revises: 
Create Date: 2026-10-18 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None

BUDGET_CATEGORIES = "('Labor','Materials','Equipment','Subcontractors','Other')"


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "projects",
        _id_column(),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("client_name", sa.Text()),
        sa.Column("address", sa.Text()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("contract_value", sa.Numeric(12, 2)),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column("ingest_token", sa.String(length=64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('active','completed','on_hold')", name="chk_project_status"),
    )
    op.create_index("idx_projects_owner", "projects", ["owner_id"])

    op.create_table(
        "budget_category_estimates",
        _id_column(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("estimated_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("project_id", "category", name="uniq_budget_project_category"),
        sa.CheckConstraint("estimated_amount >= 0", name="chk_budget_estimate_non_negative"),
        sa.CheckConstraint(f"category IN {BUDGET_CATEGORIES}", name="chk_budget_category"),
    )

    op.create_table(
        "project_documents",
        _id_column(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer()),
        sa.Column("mime_type", sa.String(length=128)),
        sa.Column("document_type", sa.String(length=32)),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("raw_extraction", postgresql.JSONB()),
        sa.Column("vendor_name", sa.Text()),
        sa.Column("document_number", sa.Text()),
        sa.Column("document_date", sa.Date()),
        sa.Column("due_date", sa.Date()),
        sa.Column("total_amount", sa.Numeric(12, 2)),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column(
            "parent_document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("project_documents.id", ondelete="CASCADE"),
        ),
        sa.Column("email_from", sa.Text()),
        sa.Column("email_to", sa.Text()),
        sa.Column("email_subject", sa.Text()),
        sa.Column("email_body", sa.Text()),
        sa.Column("email_received_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('pending','processing','extracted','confirmed','rejected','failed')",
            name="chk_document_status",
        ),
        sa.CheckConstraint(
            "document_type IS NULL OR document_type IN "
            "('invoice','quote','estimate','change_order','receipt','other','email')",
            name="chk_document_type",
        ),
        sa.CheckConstraint(
            "NOT (document_type = 'email' AND parent_document_id IS NOT NULL)",
            name="chk_email_is_top_level",
        ),
    )
    op.create_index("idx_documents_project", "project_documents", ["project_id"])
    op.create_index("idx_documents_parent", "project_documents", ["parent_document_id"])
    op.create_index("idx_documents_status", "project_documents", ["status"])

    op.create_table(
        "line_items",
        _id_column(),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("project_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2)),
        sa.Column("unit", sa.Text()),
        sa.Column("unit_price", sa.Numeric(12, 2)),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", sa.String(length=32)),
        sa.Column("cost_code", sa.Text()),
        sa.Column("sort_order", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            f"category IS NULL OR category IN {BUDGET_CATEGORIES}",
            name="chk_line_item_category",
        ),
    )
    op.create_index("idx_line_items_document", "line_items", ["document_id"])
    op.create_index("idx_line_items_project", "line_items", ["project_id"])

    op.create_table(
        "prompt_executions",
        _id_column(),
        sa.Column("prompt_id", sa.String(length=64), nullable=False),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("project_documents.id", ondelete="SET NULL"),
        ),
        sa.Column("input_tokens", sa.Integer()),
        sa.Column("output_tokens", sa.Integer()),
        sa.Column("latency_ms", sa.Integer()),
        sa.Column("raw_response", sa.Text()),
        sa.Column("parsed_response", postgresql.JSONB()),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_prompt_exec_prompt", "prompt_executions", ["prompt_id"])
    op.create_index("idx_prompt_exec_document", "prompt_executions", ["document_id"])


def downgrade() -> None:
    op.drop_index("idx_prompt_exec_document", table_name="prompt_executions")
    op.drop_index("idx_prompt_exec_prompt", table_name="prompt_executions")
    op.drop_table("prompt_executions")

    op.drop_index("idx_line_items_project", table_name="line_items")
    op.drop_index("idx_line_items_document", table_name="line_items")
    op.drop_table("line_items")

    op.drop_index("idx_documents_status", table_name="project_documents")
    op.drop_index("idx_documents_parent", table_name="project_documents")
    op.drop_index("idx_documents_project", table_name="project_documents")
    op.drop_table("project_documents")

    op.drop_table("budget_category_estimates")

    op.drop_index("idx_projects_owner", table_name="projects")
    op.drop_table("projects")
