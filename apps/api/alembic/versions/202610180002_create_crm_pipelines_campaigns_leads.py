"""create crm pipelines, campaigns, properties and leads

Revision ID: 202610180002
Revises: 202610180001
Create Date: 2026-10-18 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180002"
down_revision: str | None = "202610180001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "crm_pipeline",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "crm_pipeline_stage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pipeline_id", sa.Uuid(), sa.ForeignKey("crm_pipeline.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_pipeline_stage_pipeline_order",
        "crm_pipeline_stage",
        ["pipeline_id", "stage_order"],
        unique=False,
    )

    op.create_table(
        "crm_campaign",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("pipeline_id", sa.Uuid(), sa.ForeignKey("crm_pipeline.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("budget", sa.Numeric(14, 2), nullable=True),
        sa.Column("actual_spend", sa.Numeric(14, 2), nullable=True),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("source_details", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_campaign_pipeline_id", "crm_campaign", ["pipeline_id"], unique=False)
    op.create_index("ix_crm_campaign_status", "crm_campaign", ["status"], unique=False)

    op.create_table(
        "crm_campaign_assignee",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), sa.ForeignKey("crm_campaign.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "user_id", name="uq_crm_campaign_assignee_pair"),
    )
    op.create_index("ix_crm_campaign_assignee_user_id", "crm_campaign_assignee", ["user_id"], unique=False)

    op.create_table(
        "crm_property",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("state", sa.String(length=50), nullable=False),
        sa.Column("zip_code", sa.String(length=20), nullable=False),
        sa.Column("country", sa.String(length=50), nullable=False, server_default="USA"),
        sa.Column("property_type", sa.String(length=16), nullable=False),
        sa.Column("listing_status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("price", sa.Numeric(14, 2), nullable=False),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Numeric(4, 1), nullable=True),
        sa.Column("square_feet", sa.Integer(), nullable=True),
        sa.Column("lot_size", sa.Numeric(12, 2), nullable=True),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("mls_number", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("hoa_fees", sa.Numeric(10, 2), nullable=True),
        sa.Column("property_tax", sa.Numeric(10, 2), nullable=True),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("listed_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=True),
        sa.Column("listed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_price", sa.Numeric(14, 2), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mls_number"),
    )
    op.create_index("ix_crm_property_status_type", "crm_property", ["listing_status", "property_type"], unique=False)
    op.create_index("ix_crm_property_city", "crm_property", ["city"], unique=False)
    op.create_index("ix_crm_property_price", "crm_property", ["price"], unique=False)

    op.create_table(
        "crm_campaign_property",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), sa.ForeignKey("crm_campaign.id", ondelete="CASCADE"), nullable=False),
        sa.Column("property_id", sa.Uuid(), sa.ForeignKey("crm_property.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "property_id", name="uq_crm_campaign_property_pair"),
    )

    op.create_table(
        "crm_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("mobile", sa.String(length=32), nullable=True),
        sa.Column("alternate_phone", sa.String(length=32), nullable=True),
        sa.Column("lead_type", sa.String(length=16), nullable=False, server_default="BUYER"),
        sa.Column("property_type_preference", sa.JSON(), nullable=False),
        sa.Column("budget_min", sa.Numeric(14, 2), nullable=True),
        sa.Column("budget_max", sa.Numeric(14, 2), nullable=True),
        sa.Column("location_preference", sa.JSON(), nullable=False),
        sa.Column("bedrooms_min", sa.Integer(), nullable=True),
        sa.Column("bathrooms_min", sa.Numeric(4, 1), nullable=True),
        sa.Column("square_feet_min", sa.Integer(), nullable=True),
        sa.Column("move_in_timeline", sa.String(length=32), nullable=True),
        sa.Column("current_housing_status", sa.String(length=32), nullable=True),
        sa.Column("pre_approval_status", sa.String(length=32), nullable=True),
        sa.Column("pre_approval_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("campaign_id", sa.Uuid(), sa.ForeignKey("crm_campaign.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "current_stage_id",
            sa.Uuid(),
            sa.ForeignKey("crm_pipeline_stage.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="MEDIUM"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("assigned_to_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("initial_notes", sa.Text(), nullable=True),
        sa.Column("next_follow_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_contacted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_lead_campaign_stage", "crm_lead", ["campaign_id", "current_stage_id"], unique=False)
    op.create_index("ix_crm_lead_assigned_to_id", "crm_lead", ["assigned_to_id"], unique=False)
    op.create_index("ix_crm_lead_is_archived", "crm_lead", ["is_archived"], unique=False)
    op.create_index("ix_crm_lead_email", "crm_lead", ["email"], unique=False)
    op.create_index("ix_crm_lead_mobile", "crm_lead", ["mobile"], unique=False)
    op.create_index("ix_crm_lead_next_follow_up_at", "crm_lead", ["next_follow_up_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_lead_next_follow_up_at", table_name="crm_lead")
    op.drop_index("ix_crm_lead_mobile", table_name="crm_lead")
    op.drop_index("ix_crm_lead_email", table_name="crm_lead")
    op.drop_index("ix_crm_lead_is_archived", table_name="crm_lead")
    op.drop_index("ix_crm_lead_assigned_to_id", table_name="crm_lead")
    op.drop_index("ix_crm_lead_campaign_stage", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_table("crm_campaign_property")
    op.drop_index("ix_crm_property_price", table_name="crm_property")
    op.drop_index("ix_crm_property_city", table_name="crm_property")
    op.drop_index("ix_crm_property_status_type", table_name="crm_property")
    op.drop_table("crm_property")
    op.drop_index("ix_crm_campaign_assignee_user_id", table_name="crm_campaign_assignee")
    op.drop_table("crm_campaign_assignee")
    op.drop_index("ix_crm_campaign_status", table_name="crm_campaign")
    op.drop_index("ix_crm_campaign_pipeline_id", table_name="crm_campaign")
    op.drop_table("crm_campaign")
    op.drop_index("ix_crm_pipeline_stage_pipeline_order", table_name="crm_pipeline_stage")
    op.drop_table("crm_pipeline_stage")
    op.drop_table("crm_pipeline")
