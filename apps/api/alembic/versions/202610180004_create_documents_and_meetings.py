"""create documents, folders and meetings

Revision ID: 202610180004
Revises: 202610180003
Create Date: 2026-10-18 00:04:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180004"
down_revision: str | None = "202610180003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "doc_folder",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="SHARED"),
        sa.Column("parent_id", sa.Uuid(), sa.ForeignKey("doc_folder.id", ondelete="CASCADE"), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_doc_folder_parent_id", "doc_folder", ["parent_id"], unique=False)
    op.create_index("ix_doc_folder_type", "doc_folder", ["type"], unique=False)

    op.create_table(
        "doc_folder_share",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("folder_id", sa.Uuid(), sa.ForeignKey("doc_folder.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("folder_id", "user_id", name="uq_doc_folder_share_pair"),
    )
    op.create_index("ix_doc_folder_share_user_id", "doc_folder_share", ["user_id"], unique=False)

    op.create_table(
        "doc_document",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("file_id", sa.Uuid(), nullable=False),
        sa.Column("file_type", sa.String(length=128), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="SHARED"),
        sa.Column("folder_id", sa.Uuid(), sa.ForeignKey("doc_folder.id", ondelete="CASCADE"), nullable=True),
        sa.Column("uploaded_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_id"),
    )
    op.create_index("ix_doc_document_folder_id", "doc_document", ["folder_id"], unique=False)
    op.create_index("ix_doc_document_type", "doc_document", ["type"], unique=False)

    op.create_table(
        "doc_document_share",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("document_id", sa.Uuid(), sa.ForeignKey("doc_document.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "user_id", name="uq_doc_document_share_pair"),
    )
    op.create_index("ix_doc_document_share_user_id", "doc_document_share", ["user_id"], unique=False)

    op.create_table(
        "meeting",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("meeting_url", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="SCHEDULED"),
        sa.Column("organizer_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_meeting_organizer_start", "meeting", ["organizer_id", "start_time"], unique=False)
    op.create_index("ix_meeting_start_status", "meeting", ["start_time", "status"], unique=False)

    op.create_table(
        "meeting_attendee",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("meeting_id", sa.Uuid(), sa.ForeignKey("meeting.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("meeting_id", "user_id", name="uq_meeting_attendee_pair"),
    )
    op.create_index(
        "ix_meeting_attendee_user_status",
        "meeting_attendee",
        ["user_id", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_meeting_attendee_user_status", table_name="meeting_attendee")
    op.drop_table("meeting_attendee")
    op.drop_index("ix_meeting_start_status", table_name="meeting")
    op.drop_index("ix_meeting_organizer_start", table_name="meeting")
    op.drop_table("meeting")
    op.drop_index("ix_doc_document_share_user_id", table_name="doc_document_share")
    op.drop_table("doc_document_share")
    op.drop_index("ix_doc_document_type", table_name="doc_document")
    op.drop_index("ix_doc_document_folder_id", table_name="doc_document")
    op.drop_table("doc_document")
    op.drop_index("ix_doc_folder_share_user_id", table_name="doc_folder_share")
    op.drop_table("doc_folder_share")
    op.drop_index("ix_doc_folder_type", table_name="doc_folder")
    op.drop_index("ix_doc_folder_parent_id", table_name="doc_folder")
    op.drop_table("doc_folder")
