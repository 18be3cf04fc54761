from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, model_validator


PipelineType = Literal["BUYER", "SELLER", "INVESTOR", "RENTER"]
CampaignStatus = Literal["DRAFT", "ACTIVE", "PAUSED", "COMPLETED", "ARCHIVED"]
LeadType = Literal["BUYER", "SELLER", "INVESTOR", "RENTER", "BUYER_SELLER"]
Priority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
PropertyType = Literal["HOUSE", "CONDO", "TOWNHOUSE", "LAND", "COMMERCIAL", "MULTI_FAMILY", "MANUFACTURED"]
MoveInTimeline = Literal[
    "ASAP",
    "ONE_TO_THREE_MONTHS",
    "THREE_TO_SIX_MONTHS",
    "SIX_TO_TWELVE_MONTHS",
    "OVER_A_YEAR",
    "JUST_BROWSING",
]
HousingStatus = Literal["RENTING", "OWNS_HOME", "LIVING_WITH_FAMILY", "OTHER"]
PreApprovalStatus = Literal["NOT_STARTED", "IN_PROGRESS", "PRE_QUALIFIED", "PRE_APPROVED", "NOT_NEEDED"]
ListingStatus = Literal["ACTIVE", "PENDING", "SOLD", "OFF_MARKET", "COMING_SOON"]
InterestStatus = Literal[
    "INTERESTED",
    "TOURED",
    "FAVORITED",
    "OFFER_MADE",
    "OFFER_ACCEPTED",
    "OFFER_REJECTED",
    "NOT_INTERESTED",
]
InteractionType = Literal[
    "CALL",
    "EMAIL",
    "SMS",
    "WHATSAPP",
    "MEETING",
    "NOTE",
    "PROPERTY_SHOWING",
    "OFFER_SUBMITTED",
    "STAGE_CHANGE",
    "DOCUMENT_SENT",
    "AUTOMATED_EMAIL",
    "AUTOMATED_SMS",
]
Direction = Literal["INBOUND", "OUTBOUND"]
TaskType = Literal["GENERAL", "CALL", "EMAIL", "FOLLOW_UP", "PROPOSAL", "CONTRACT"]
DuplicateHandling = Literal["SKIP", "UPDATE", "CREATE_NEW"]
DuplicateCheckField = Literal["email", "mobile", "both"]
TransformFunction = Literal["NONE", "UPPERCASE", "LOWERCASE", "TRIM", "SPLIT_COMMA", "PARSE_NUMBER", "PARSE_DATE"]
ImportRowStatus = Literal["success", "error", "skipped"]

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
DEFAULT_STAGE_COLOR = "#3B82F6"


def _blank_email_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalEmail = Annotated[EmailStr | None, BeforeValidator(_blank_email_to_none)]


# Pipelines


class StageInput(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str = Field(default=DEFAULT_STAGE_COLOR, pattern=HEX_COLOR_PATTERN)
    is_default: bool = False


class PipelineCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    type: PipelineType
    stages: list[StageInput] = Field(min_length=1)


class PipelineUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class PipelineStageCreate(StageInput):
    order: int | None = Field(default=None, ge=0)


class PipelineStageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    order: int | None = Field(default=None, ge=0)
    is_default: bool | None = None


class PipelineStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    pipeline_id: UUID
    name: str
    description: str | None
    color: str
    order: int
    is_default: bool
    is_final: bool
    lead_count: int | None = None


class PipelineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    type: PipelineType
    is_active: bool
    created_by_id: UUID
    created_at: datetime
    updated_at: datetime
    stages: list[PipelineStageRead]
    campaign_count: int | None = None


# Campaigns


class CampaignCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    pipeline_id: UUID
    status: CampaignStatus = "ACTIVE"
    start_date: datetime | None = None
    end_date: datetime | None = None
    budget: float | None = Field(default=None, ge=0)
    source: str | None = Field(default=None, max_length=100)
    source_details: str | None = Field(default=None, max_length=500)
    assigned_to_ids: list[UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_dates(self) -> "CampaignCreate":
        if self.start_date is not None and self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class CampaignUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    status: CampaignStatus | None = None
    end_date: datetime | None = None
    budget: float | None = Field(default=None, ge=0)
    actual_spend: float | None = Field(default=None, ge=0)
    source: str | None = Field(default=None, max_length=100)
    source_details: str | None = Field(default=None, max_length=500)
    assigned_to_ids: list[UUID] | None = None


class CampaignRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    pipeline_id: UUID
    status: CampaignStatus
    start_date: datetime | None
    end_date: datetime | None
    budget: float | None
    actual_spend: float | None
    source: str | None
    source_details: str | None
    created_by_id: UUID
    assigned_to_ids: list[UUID]
    created_at: datetime
    updated_at: datetime
    lead_count: int | None = None


class StageDistributionEntry(BaseModel):
    stage_id: UUID
    stage_name: str
    color: str
    order: int
    is_final: bool
    count: int


class CampaignStats(BaseModel):
    campaign_id: UUID
    total_leads: int
    active_leads: int
    budget: float | None
    actual_spend: float | None
    cost_per_lead: float | None
    conversion_rate: float
    stage_distribution: list[StageDistributionEntry]


class BoardColumn(BaseModel):
    stage: PipelineStageRead
    count: int
    leads: list[LeadRead]


class CampaignBoard(BaseModel):
    campaign_id: UUID
    pipeline_id: UUID
    columns: list[BoardColumn]


class CampaignPropertyCreate(BaseModel):
    property_id: UUID
    is_featured: bool = False
    order: int = Field(default=0, ge=0)
    notes: str | None = Field(default=None, max_length=1000)


class CampaignPropertyUpdate(BaseModel):
    is_featured: bool | None = None
    order: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=1000)


class CampaignPropertyBulkAdd(BaseModel):
    property_ids: list[UUID] = Field(min_length=1)
    is_featured: bool = False


class CampaignPropertyBulkResult(BaseModel):
    added: int
    skipped: int


# Properties


class PropertyCreate(BaseModel):
    address: str = Field(min_length=5, max_length=255)
    city: str = Field(min_length=2, max_length=100)
    state: str = Field(min_length=2, max_length=100)
    zip_code: str = Field(min_length=4, max_length=20)
    country: str = Field(default="USA", max_length=100)
    property_type: PropertyType
    listing_status: ListingStatus = "ACTIVE"
    price: float = Field(ge=0)
    bedrooms: int | None = Field(default=None, ge=0, le=50)
    bathrooms: float | None = Field(default=None, ge=0, le=50)
    square_feet: int | None = Field(default=None, ge=0)
    lot_size: float | None = Field(default=None, ge=0)
    year_built: int | None = Field(default=None, ge=1700, le=2100)
    mls_number: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=5000)
    hoa_fees: float | None = Field(default=None, ge=0)
    property_tax: float | None = Field(default=None, ge=0)
    features: list[str] = Field(default_factory=list)
    listed_by_id: UUID | None = None
    listed_date: datetime | None = None


class PropertyUpdate(BaseModel):
    address: str | None = Field(default=None, min_length=5, max_length=255)
    city: str | None = Field(default=None, min_length=2, max_length=100)
    state: str | None = Field(default=None, min_length=2, max_length=100)
    zip_code: str | None = Field(default=None, min_length=4, max_length=20)
    property_type: PropertyType | None = None
    listing_status: ListingStatus | None = None
    price: float | None = Field(default=None, ge=0)
    bedrooms: int | None = Field(default=None, ge=0, le=50)
    bathrooms: float | None = Field(default=None, ge=0, le=50)
    square_feet: int | None = Field(default=None, ge=0)
    lot_size: float | None = Field(default=None, ge=0)
    year_built: int | None = Field(default=None, ge=1700, le=2100)
    mls_number: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=5000)
    hoa_fees: float | None = Field(default=None, ge=0)
    property_tax: float | None = Field(default=None, ge=0)
    features: list[str] | None = None
    sold_date: datetime | None = None
    sold_price: float | None = Field(default=None, ge=0)


class PropertyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    address: str
    city: str
    state: str
    zip_code: str
    country: str
    property_type: PropertyType
    listing_status: ListingStatus
    price: float
    bedrooms: int | None
    bathrooms: float | None
    square_feet: int | None
    lot_size: float | None
    year_built: int | None
    mls_number: str | None
    description: str | None
    hoa_fees: float | None
    property_tax: float | None
    features: list[str]
    listed_by_id: UUID | None
    listed_date: datetime | None
    sold_date: datetime | None
    sold_price: float | None
    created_at: datetime
    updated_at: datetime


class PropertyStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    average_active_price: float | None


class CampaignPropertyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    campaign_id: UUID
    property_id: UUID
    is_featured: bool
    order: int
    notes: str | None
    added_at: datetime
    property: PropertyRead


class PropertyInterestCreate(BaseModel):
    property_id: UUID
    status: InterestStatus = "INTERESTED"
    notes: str | None = Field(default=None, max_length=1000)
    viewed_at: datetime | None = None
    rating: int | None = Field(default=None, ge=1, le=5)


class PropertyInterestUpdate(BaseModel):
    status: InterestStatus | None = None
    notes: str | None = Field(default=None, max_length=1000)
    viewed_at: datetime | None = None
    rating: int | None = Field(default=None, ge=1, le=5)


class PropertyInterestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    property_id: UUID
    status: InterestStatus
    notes: str | None
    viewed_at: datetime | None
    rating: int | None
    created_at: datetime
    updated_at: datetime


# Leads


class LeadCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: OptionalEmail = None
    mobile: str | None = Field(default=None, max_length=20)
    alternate_phone: str | None = Field(default=None, max_length=20)
    lead_type: LeadType = "BUYER"
    property_type_preference: list[PropertyType] = Field(default_factory=list)
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    location_preference: list[str] = Field(default_factory=list)
    bedrooms_min: int | None = Field(default=None, ge=0, le=20)
    bathrooms_min: float | None = Field(default=None, ge=0, le=20)
    square_feet_min: int | None = Field(default=None, ge=0)
    move_in_timeline: MoveInTimeline | None = None
    current_housing_status: HousingStatus | None = None
    pre_approval_status: PreApprovalStatus | None = None
    pre_approval_amount: float | None = Field(default=None, ge=0)
    campaign_id: UUID
    current_stage_id: UUID
    priority: Priority = "MEDIUM"
    tags: list[str] = Field(default_factory=list)
    assigned_to_id: UUID | None = None
    initial_notes: str | None = Field(default=None, max_length=2000)
    next_follow_up_at: datetime | None = None


class LeadUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: OptionalEmail = None
    mobile: str | None = Field(default=None, max_length=20)
    alternate_phone: str | None = Field(default=None, max_length=20)
    lead_type: LeadType | None = None
    property_type_preference: list[PropertyType] | None = None
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    location_preference: list[str] | None = None
    bedrooms_min: int | None = Field(default=None, ge=0, le=20)
    bathrooms_min: float | None = Field(default=None, ge=0, le=20)
    square_feet_min: int | None = Field(default=None, ge=0)
    move_in_timeline: MoveInTimeline | None = None
    current_housing_status: HousingStatus | None = None
    pre_approval_status: PreApprovalStatus | None = None
    pre_approval_amount: float | None = Field(default=None, ge=0)
    current_stage_id: UUID | None = None
    score: int | None = Field(default=None, ge=0, le=100)
    priority: Priority | None = None
    tags: list[str] | None = None
    assigned_to_id: UUID | None = None
    next_follow_up_at: datetime | None = None
    is_archived: bool | None = None
    archived_reason: str | None = Field(default=None, max_length=500)


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None
    mobile: str | None
    alternate_phone: str | None
    lead_type: LeadType
    property_type_preference: list[str]
    budget_min: float | None
    budget_max: float | None
    location_preference: list[str]
    bedrooms_min: int | None
    bathrooms_min: float | None
    square_feet_min: int | None
    move_in_timeline: str | None
    current_housing_status: str | None
    pre_approval_status: str | None
    pre_approval_amount: float | None
    campaign_id: UUID
    current_stage_id: UUID
    priority: Priority
    tags: list[str]
    score: int | None
    assigned_to_id: UUID | None
    created_by_id: UUID
    initial_notes: str | None
    next_follow_up_at: datetime | None
    last_contacted_at: datetime | None
    is_archived: bool
    archived_at: datetime | None
    archived_reason: str | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class LeadStageChangeRequest(BaseModel):
    stage_id: UUID


class LeadArchiveRequest(BaseModel):
    is_archived: bool
    reason: str | None = Field(default=None, max_length=500)


class LeadBulkArchiveRequest(BaseModel):
    lead_ids: list[UUID] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=500)


class LeadBulkArchiveResult(BaseModel):
    archived_count: int


class LeadConvertRequest(BaseModel):
    stage_id: UUID


class LeadStats(BaseModel):
    total: int
    by_type: dict[str, int]
    by_priority: dict[str, int]
    upcoming_follow_ups: int


# Interactions


class InteractionLog(BaseModel):
    type: InteractionType
    subject: str | None = Field(default=None, max_length=255)
    content: str | None = Field(default=None, max_length=10000)
    direction: Direction = "OUTBOUND"
    duration: int | None = Field(default=None, ge=0)
    phone_number: str | None = Field(default=None, max_length=20)
    email_from: OptionalEmail = None
    email_to: OptionalEmail = None
    occurred_at: datetime | None = None


class InteractionCreate(InteractionLog):
    lead_id: UUID


class InteractionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    type: InteractionType
    subject: str | None
    content: str | None
    direction: Direction | None
    duration: int | None
    phone_number: str | None
    email_from: str | None
    email_to: str | None
    occurred_at: datetime
    created_by_id: UUID
    created_at: datetime


class InteractionStats(BaseModel):
    total: int
    by_type: dict[str, int]


# Notes


class NoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    is_pinned: bool = False


class NoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    content: str
    is_pinned: bool
    author_id: UUID
    created_at: datetime
    updated_at: datetime


# Tasks


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    priority: Priority = "MEDIUM"
    type: TaskType = "GENERAL"
    due_date: datetime
    lead_id: UUID | None = None
    assigned_to_id: UUID | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    priority: Priority | None = None
    type: TaskType | None = None
    due_date: datetime | None = None
    is_completed: bool | None = None
    assigned_to_id: UUID | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    type: TaskType
    priority: Priority
    due_date: datetime | None
    is_completed: bool
    completed_at: datetime | None
    lead_id: UUID | None
    assigned_to_id: UUID
    created_by_id: UUID
    created_at: datetime
    updated_at: datetime


class TaskStats(BaseModel):
    total: int
    completed: int
    pending: int
    overdue: int
    due_today: int


class TaskCleanupResult(BaseModel):
    deleted: int


class FollowUpStats(BaseModel):
    due_today: int
    upcoming: int
    overdue: int


class FollowUpRead(BaseModel):
    lead_id: UUID
    first_name: str
    last_name: str
    email: str | None
    mobile: str | None
    campaign_id: UUID
    priority: Priority
    assigned_to_id: UUID | None
    next_follow_up_at: datetime
    task_id: UUID | None


class LeadDetailRead(LeadRead):
    interactions: list[InteractionRead]
    notes: list[NoteRead]
    tasks: list[TaskRead]
    property_interests: list[PropertyInterestRead]


# Bulk import


class ColumnMapping(BaseModel):
    source_column: str = Field(min_length=1)
    target_field: str = Field(min_length=1)
    transform_function: TransformFunction = "NONE"


class BulkImportRequest(BaseModel):
    campaign_id: UUID
    default_stage_id: UUID
    default_assigned_to_id: UUID | None = None
    default_priority: Priority = "MEDIUM"
    duplicate_handling: DuplicateHandling = "SKIP"
    duplicate_check_fields: list[DuplicateCheckField] = Field(default_factory=lambda: ["email"])
    column_mappings: list[ColumnMapping] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)


class ImportRowResult(BaseModel):
    row: int
    status: ImportRowStatus
    message: str | None = None
    lead_id: UUID | None = None


class ImportSummary(BaseModel):
    total_rows: int
    successful: int
    skipped: int
    failed: int


class BulkImportResult(BaseModel):
    summary: ImportSummary
    results: list[ImportRowResult]
    lead_ids: list[UUID]
    job_id: UUID


class ImportParseResult(BaseModel):
    headers: list[str]
    preview: list[dict[str, Any]]
    total_rows: int
    all_rows: list[dict[str, Any]]


class LeadImportJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    campaign_id: UUID
    requested_by_id: UUID
    status: str
    total_rows: int
    successful: int
    skipped: int
    failed: int
    error: str | None
    correlation_id: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime


BoardColumn.model_rebuild()
