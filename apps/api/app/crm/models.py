from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.users.models import User  # noqa: F401  (FK target must be registered on Base.metadata)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pipeline(Base):
    __tablename__ = "crm_pipeline"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    stages: Mapped[list[PipelineStage]] = relationship(
        "PipelineStage",
        back_populates="pipeline",
        cascade="all, delete-orphan",
        order_by="PipelineStage.order",
    )
    campaigns: Mapped[list[Campaign]] = relationship("Campaign", back_populates="pipeline")


class PipelineStage(Base):
    __tablename__ = "crm_pipeline_stage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_pipeline.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#3B82F6", server_default="#3B82F6")
    # Positions shift in bulk during insert/reorder/delete, so uniqueness is kept by the service, not a constraint.
    order: Mapped[int] = mapped_column("stage_order", Integer, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    pipeline: Mapped[Pipeline] = relationship("Pipeline", back_populates="stages")


class Campaign(Base):
    __tablename__ = "crm_campaign"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_pipeline.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE", server_default="ACTIVE")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    budget: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    actual_spend: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    pipeline: Mapped[Pipeline] = relationship("Pipeline", back_populates="campaigns")
    assignees: Mapped[list[CampaignAssignee]] = relationship(
        "CampaignAssignee",
        back_populates="campaign",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    properties: Mapped[list[CampaignProperty]] = relationship(
        "CampaignProperty",
        back_populates="campaign",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CampaignProperty.order",
    )

    @property
    def assigned_to_ids(self) -> list[uuid.UUID]:
        return [assignee.user_id for assignee in self.assignees]


class CampaignAssignee(Base):
    __tablename__ = "crm_campaign_assignee"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_campaign.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="CASCADE"),
        nullable=False,
    )

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="assignees")

    __table_args__ = (UniqueConstraint("campaign_id", "user_id", name="uq_crm_campaign_assignee_pair"),)


class Property(Base):
    __tablename__ = "crm_property"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(50), nullable=False, default="USA", server_default="USA")
    property_type: Mapped[str] = mapped_column(String(16), nullable=False)
    listing_status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE", server_default="ACTIVE")
    price: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[float | None] = mapped_column(Numeric(4, 1, asdecimal=False), nullable=True)
    square_feet: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lot_size: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mls_number: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hoa_fees: Mapped[float | None] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    property_tax: Mapped[float | None] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    listed_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=True)
    listed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sold_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sold_price: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class CampaignProperty(Base):
    __tablename__ = "crm_campaign_property"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_campaign.id", ondelete="CASCADE"),
        nullable=False,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_property.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    order: Mapped[int] = mapped_column("display_order", Integer, nullable=False, default=0, server_default="0")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="properties")
    property: Mapped[Property] = relationship("Property")

    __table_args__ = (UniqueConstraint("campaign_id", "property_id", name="uq_crm_campaign_property_pair"),)


class Lead(Base):
    __tablename__ = "crm_lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    mobile: Mapped[str | None] = mapped_column(String(32), nullable=True)
    alternate_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lead_type: Mapped[str] = mapped_column(String(16), nullable=False, default="BUYER", server_default="BUYER")
    property_type_preference: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    budget_min: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    budget_max: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    location_preference: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    bedrooms_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms_min: Mapped[float | None] = mapped_column(Numeric(4, 1, asdecimal=False), nullable=True)
    square_feet_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    move_in_timeline: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_housing_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pre_approval_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pre_approval_amount: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_campaign.id", ondelete="RESTRICT"),
        nullable=False,
    )
    current_stage_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_pipeline_stage.id", ondelete="RESTRICT"),
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM", server_default="MEDIUM")
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    initial_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_follow_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    campaign: Mapped[Campaign] = relationship("Campaign")
    current_stage: Mapped[PipelineStage] = relationship("PipelineStage")
    interactions: Mapped[list[Interaction]] = relationship(
        "Interaction",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Interaction.occurred_at.desc()",
    )
    notes: Mapped[list[Note]] = relationship(
        "Note",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: (Note.is_pinned.desc(), Note.created_at.desc()),
    )
    property_interests: Mapped[list[PropertyInterest]] = relationship(
        "PropertyInterest",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tasks: Mapped[list[Task]] = relationship("Task", back_populates="lead", order_by="Task.due_date")


class Interaction(Base):
    __tablename__ = "crm_interaction"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    direction: Mapped[str | None] = mapped_column(String(16), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email_from: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lead: Mapped[Lead] = relationship("Lead", back_populates="interactions")


class Task(Base):
    __tablename__ = "crm_task"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="GENERAL", server_default="GENERAL")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM", server_default="MEDIUM")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_to_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    lead: Mapped[Lead | None] = relationship("Lead", back_populates="tasks")


class Note(Base):
    __tablename__ = "crm_note"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    lead: Mapped[Lead] = relationship("Lead", back_populates="notes")


class PropertyInterest(Base):
    __tablename__ = "crm_property_interest"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_property.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="INTERESTED", server_default="INTERESTED")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    lead: Mapped[Lead] = relationship("Lead", back_populates="property_interests")
    property: Mapped[Property] = relationship("Property")

    __table_args__ = (UniqueConstraint("lead_id", "property_id", name="uq_crm_property_interest_pair"),)


class LeadImportJob(Base):
    __tablename__ = "crm_lead_import_job"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_campaign.id", ondelete="CASCADE"),
        nullable=False,
    )
    requested_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="RUNNING", server_default="RUNNING")
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_crm_pipeline_stage_pipeline_order", PipelineStage.pipeline_id, PipelineStage.order)
Index("ix_crm_campaign_pipeline_id", Campaign.pipeline_id)
Index("ix_crm_campaign_status", Campaign.status)
Index("ix_crm_campaign_assignee_user_id", CampaignAssignee.user_id)
Index("ix_crm_lead_campaign_stage", Lead.campaign_id, Lead.current_stage_id)
Index("ix_crm_lead_assigned_to_id", Lead.assigned_to_id)
Index("ix_crm_lead_is_archived", Lead.is_archived)
Index("ix_crm_lead_email", Lead.email)
Index("ix_crm_lead_mobile", Lead.mobile)
Index("ix_crm_lead_next_follow_up_at", Lead.next_follow_up_at)
Index("ix_crm_interaction_lead_occurred", Interaction.lead_id, Interaction.occurred_at)
Index("ix_crm_interaction_type", Interaction.type)
Index("ix_crm_task_assignee_completed_due", Task.assigned_to_id, Task.is_completed, Task.due_date)
Index("ix_crm_task_lead_type", Task.lead_id, Task.type)
Index("ix_crm_note_lead_id", Note.lead_id)
Index("ix_crm_property_status_type", Property.listing_status, Property.property_type)
Index("ix_crm_property_city", Property.city)
Index("ix_crm_property_price", Property.price)
Index("ix_crm_property_interest_property_id", PropertyInterest.property_id)
Index("ix_crm_lead_import_job_campaign_created", LeadImportJob.campaign_id, LeadImportJob.created_at)
