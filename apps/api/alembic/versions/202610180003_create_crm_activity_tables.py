"""create crm interactions, tasks, notes, property interests and import jobs

Revision ID: 202610180003
Revises: 202610180002
Create Date: 2026-10-18 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180003"
down_revision: str | None = "202610180002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_interaction",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("direction", sa.String(length=16), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("email_from", sa.Text(), nullable=True),
        sa.Column("email_to", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_interaction_lead_occurred", "crm_interaction", ["lead_id", "occurred_at"], unique=False)
    op.create_index("ix_crm_interaction_type", "crm_interaction", ["type"], unique=False)

    op.create_table(
        "crm_task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="GENERAL"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="MEDIUM"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="SET NULL"), nullable=True),
        sa.Column("assigned_to_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_task_assignee_completed_due",
        "crm_task",
        ["assigned_to_id", "is_completed", "due_date"],
        unique=False,
    )
    op.create_index("ix_crm_task_lead_type", "crm_task", ["lead_id", "type"], unique=False)

    op.create_table(
        "crm_note",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("author_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_note_lead_id", "crm_note", ["lead_id"], unique=False)

    op.create_table(
        "crm_property_interest",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("property_id", sa.Uuid(), sa.ForeignKey("crm_property.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="INTERESTED"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lead_id", "property_id", name="uq_crm_property_interest_pair"),
    )
    op.create_index(
        "ix_crm_property_interest_property_id",
        "crm_property_interest",
        ["property_id"],
        unique=False,
    )

    op.create_table(
        "crm_lead_import_job",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), sa.ForeignKey("crm_campaign.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requested_by_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="RUNNING"),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_lead_import_job_campaign_created",
        "crm_lead_import_job",
        ["campaign_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_crm_lead_import_job_campaign_created", table_name="crm_lead_import_job")
    op.drop_table("crm_lead_import_job")
    op.drop_index("ix_crm_property_interest_property_id", table_name="crm_property_interest")
    op.drop_table("crm_property_interest")
    op.drop_index("ix_crm_note_lead_id", table_name="crm_note")
    op.drop_table("crm_note")
    op.drop_index("ix_crm_task_lead_type", table_name="crm_task")
    op.drop_index("ix_crm_task_assignee_completed_due", table_name="crm_task")
    op.drop_table("crm_task")
    op.drop_index("ix_crm_interaction_type", table_name="crm_interaction")
    op.drop_index("ix_crm_interaction_lead_occurred", table_name="crm_interaction")
    op.drop_table("crm_interaction")
