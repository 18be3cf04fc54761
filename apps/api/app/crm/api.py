from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from app.api.deps import domain_error_response, error_response, get_current_actor
from app.core.auth import ActorUser
from app.core.database import get_db
from app.core.errors import DomainError
from app.crm.filters import InteractionFilter, LeadFilter, PropertyFilter, TaskFilter
from app.crm.import_export import lead_importer, parse_csv
from app.crm.schemas import (
    BulkImportRequest,
    BulkImportResult,
    CampaignBoard,
    CampaignCreate,
    CampaignPropertyBulkAdd,
    CampaignPropertyBulkResult,
    CampaignPropertyCreate,
    CampaignPropertyRead,
    CampaignPropertyUpdate,
    CampaignRead,
    CampaignStats,
    CampaignUpdate,
    FollowUpRead,
    FollowUpStats,
    ImportParseResult,
    InteractionCreate,
    InteractionLog,
    InteractionRead,
    InteractionStats,
    LeadArchiveRequest,
    LeadBulkArchiveRequest,
    LeadBulkArchiveResult,
    LeadConvertRequest,
    LeadCreate,
    LeadDetailRead,
    LeadImportJobRead,
    LeadRead,
    LeadStageChangeRequest,
    LeadStats,
    LeadUpdate,
    NoteCreate,
    NoteRead,
    PipelineCreate,
    PipelineRead,
    PipelineStageCreate,
    PipelineStageRead,
    PipelineStageUpdate,
    PipelineUpdate,
    PropertyCreate,
    PropertyInterestCreate,
    PropertyInterestRead,
    PropertyInterestUpdate,
    PropertyRead,
    PropertyStats,
    PropertyUpdate,
    TaskCleanupResult,
    TaskCreate,
    TaskRead,
    TaskStats,
    TaskUpdate,
)
from app.crm.service import (
    campaign_service,
    interaction_service,
    lead_service,
    pipeline_service,
    property_service,
    task_service,
)

pipelines_router = APIRouter(prefix="/api/pipelines", tags=["crm.pipelines"])
campaigns_router = APIRouter(prefix="/api/campaigns", tags=["crm.campaigns"])
leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])
interactions_router = APIRouter(prefix="/api/interactions", tags=["crm.interactions"])
properties_router = APIRouter(prefix="/api/properties", tags=["crm.properties"])


# Pipelines


@pipelines_router.get("", response_model=list[PipelineRead])
def list_pipelines(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[PipelineRead]:
    return pipeline_service.list_pipelines(db, user)


@pipelines_router.post("", response_model=PipelineRead, status_code=status.HTTP_201_CREATED)
def create_pipeline(
    request: Request,
    dto: PipelineCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PipelineRead | JSONResponse:
    try:
        return pipeline_service.create_pipeline(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@pipelines_router.get("/{pipeline_id}", response_model=PipelineRead)
def get_pipeline(
    request: Request,
    pipeline_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PipelineRead | JSONResponse:
    try:
        return pipeline_service.get_pipeline(db, user, pipeline_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@pipelines_router.put("/{pipeline_id}", response_model=PipelineRead)
def update_pipeline(
    request: Request,
    pipeline_id: uuid.UUID,
    dto: PipelineUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PipelineRead | JSONResponse:
    try:
        return pipeline_service.update_pipeline(db, user, pipeline_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@pipelines_router.post("/{pipeline_id}/stages", response_model=PipelineStageRead, status_code=status.HTTP_201_CREATED)
def insert_stage(
    request: Request,
    pipeline_id: uuid.UUID,
    dto: PipelineStageCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PipelineStageRead | JSONResponse:
    try:
        return pipeline_service.insert_stage(db, user, pipeline_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@pipelines_router.patch("/{pipeline_id}/stages/{stage_id}", response_model=PipelineStageRead)
def update_stage(
    request: Request,
    pipeline_id: uuid.UUID,
    stage_id: uuid.UUID,
    dto: PipelineStageUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PipelineStageRead | JSONResponse:
    try:
        return pipeline_service.update_stage(db, user, pipeline_id, stage_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@pipelines_router.delete("/{pipeline_id}/stages/{stage_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_stage(
    request: Request,
    pipeline_id: uuid.UUID,
    stage_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        pipeline_service.delete_stage(db, user, pipeline_id, stage_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Campaigns


@campaigns_router.get("", response_model=list[CampaignRead])
def list_campaigns(
    status_filter: str | None = Query(default=None, alias="status"),
    pipeline_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[CampaignRead]:
    return campaign_service.list_campaigns(db, user, status_filter=status_filter, pipeline_id=pipeline_id)


@campaigns_router.post("", response_model=CampaignRead, status_code=status.HTTP_201_CREATED)
def create_campaign(
    request: Request,
    dto: CampaignCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignRead | JSONResponse:
    try:
        return campaign_service.create_campaign(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.get("/{campaign_id}", response_model=CampaignRead)
def get_campaign(
    request: Request,
    campaign_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignRead | JSONResponse:
    try:
        return campaign_service.get_campaign(db, user, campaign_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.put("/{campaign_id}", response_model=CampaignRead)
def update_campaign(
    request: Request,
    campaign_id: uuid.UUID,
    dto: CampaignUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignRead | JSONResponse:
    try:
        return campaign_service.update_campaign(db, user, campaign_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign(
    request: Request,
    campaign_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        campaign_service.delete_campaign(db, user, campaign_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@campaigns_router.get("/{campaign_id}/leads", response_model=list[LeadRead])
def list_campaign_leads(
    request: Request,
    campaign_id: uuid.UUID,
    stage_id: uuid.UUID | None = Query(default=None),
    assigned_to_id: uuid.UUID | None = Query(default=None),
    include_archived: bool = Query(default=True),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[LeadRead] | JSONResponse:
    try:
        return campaign_service.list_campaign_leads(
            db,
            user,
            campaign_id,
            stage_id=stage_id,
            assigned_to_id=assigned_to_id,
            include_archived=include_archived,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.get("/{campaign_id}/stats", response_model=CampaignStats)
def get_campaign_stats(
    request: Request,
    campaign_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignStats | JSONResponse:
    try:
        return campaign_service.get_stats(db, user, campaign_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.get("/{campaign_id}/board", response_model=CampaignBoard)
def get_campaign_board(
    request: Request,
    campaign_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignBoard | JSONResponse:
    try:
        return campaign_service.get_board(db, user, campaign_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.put("/{campaign_id}/leads/{lead_id}/stage", response_model=LeadRead)
def change_lead_stage(
    request: Request,
    campaign_id: uuid.UUID,
    lead_id: uuid.UUID,
    dto: LeadStageChangeRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.change_stage(db, user, campaign_id, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.put("/{campaign_id}/leads/{lead_id}/archive", response_model=LeadRead)
def archive_lead(
    request: Request,
    campaign_id: uuid.UUID,
    lead_id: uuid.UUID,
    dto: LeadArchiveRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.set_archived(db, user, campaign_id, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.post("/{campaign_id}/leads/bulk-archive", response_model=LeadBulkArchiveResult)
def bulk_archive_leads(
    request: Request,
    campaign_id: uuid.UUID,
    dto: LeadBulkArchiveRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadBulkArchiveResult | JSONResponse:
    try:
        return lead_service.bulk_archive(db, user, campaign_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.put("/{campaign_id}/leads/{lead_id}/convert-to-lead", response_model=LeadRead)
def convert_archived_lead(
    request: Request,
    campaign_id: uuid.UUID,
    lead_id: uuid.UUID,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.convert_to_lead(db, user, campaign_id, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.get("/{campaign_id}/properties", response_model=list[CampaignPropertyRead])
def list_campaign_properties(
    request: Request,
    campaign_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[CampaignPropertyRead] | JSONResponse:
    try:
        return campaign_service.list_properties(db, user, campaign_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.post(
    "/{campaign_id}/properties",
    response_model=CampaignPropertyRead,
    status_code=status.HTTP_201_CREATED,
)
def add_campaign_property(
    request: Request,
    campaign_id: uuid.UUID,
    dto: CampaignPropertyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignPropertyRead | JSONResponse:
    try:
        return campaign_service.add_property(db, user, campaign_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.post(
    "/{campaign_id}/properties/bulk",
    response_model=CampaignPropertyBulkResult,
    status_code=status.HTTP_201_CREATED,
)
def bulk_add_campaign_properties(
    request: Request,
    campaign_id: uuid.UUID,
    dto: CampaignPropertyBulkAdd,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignPropertyBulkResult | JSONResponse:
    try:
        return campaign_service.bulk_add_properties(db, user, campaign_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.put("/{campaign_id}/properties/{property_id}", response_model=CampaignPropertyRead)
def update_campaign_property(
    request: Request,
    campaign_id: uuid.UUID,
    property_id: uuid.UUID,
    dto: CampaignPropertyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CampaignPropertyRead | JSONResponse:
    try:
        return campaign_service.update_property(db, user, campaign_id, property_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@campaigns_router.delete("/{campaign_id}/properties/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_campaign_property(
    request: Request,
    campaign_id: uuid.UUID,
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        campaign_service.remove_property(db, user, campaign_id, property_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Leads


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    campaign_id: uuid.UUID | None = Query(default=None),
    stage_id: uuid.UUID | None = Query(default=None),
    lead_type: str | None = Query(default=None),
    priority: str | None = Query(default=None),
    assigned_to_id: uuid.UUID | None = Query(default=None),
    is_archived: bool | None = Query(default=None),
    search: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[LeadRead]:
    lead_filter = LeadFilter(
        campaign_id=campaign_id,
        stage_id=stage_id,
        lead_type=lead_type,
        priority=priority,
        assigned_to_id=assigned_to_id,
        is_archived=is_archived,
        search=search,
    )
    return lead_service.list_leads(db, user, lead_filter, cursor=cursor, limit=limit)


@leads_router.get("/stats", response_model=LeadStats)
def get_lead_stats(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadStats:
    return lead_service.get_stats(db, user)


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.post("/import/parse", response_model=ImportParseResult)
def parse_import_file(
    request: Request,
    file: UploadFile = File(...),
    user: ActorUser = Depends(get_current_actor),
) -> ImportParseResult | JSONResponse:
    try:
        return parse_csv(file.file.read())
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.post("/import/bulk", response_model=BulkImportResult)
def bulk_import_leads(
    request: Request,
    import_data: str = Form(...),
    file: UploadFile | None = File(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> BulkImportResult | JSONResponse:
    try:
        dto = BulkImportRequest.model_validate(json.loads(import_data))
    except json.JSONDecodeError as exc:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="validation_error",
            message="import_data must be valid JSON",
            details=str(exc),
        )
    except SchemaValidationError as exc:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="validation_error",
            message="Invalid import configuration",
            details=exc.errors(include_url=False, include_context=False),
        )

    try:
        if not dto.rows and file is not None:
            dto.rows = parse_csv(file.file.read()).all_rows
        return lead_importer.run(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.get("/import/jobs/{job_id}", response_model=LeadImportJobRead)
def get_import_job(
    request: Request,
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadImportJobRead | JSONResponse:
    try:
        return lead_importer.get_job(db, user, job_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.get("/{lead_id}", response_model=LeadDetailRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadDetailRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, user, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        lead_service.delete_lead(db, user, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@leads_router.get("/{lead_id}/notes", response_model=list[NoteRead])
def list_lead_notes(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[NoteRead] | JSONResponse:
    try:
        return lead_service.list_notes(db, user, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.post("/{lead_id}/notes", response_model=NoteRead, status_code=status.HTTP_201_CREATED)
def add_lead_note(
    request: Request,
    lead_id: uuid.UUID,
    dto: NoteCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> NoteRead | JSONResponse:
    try:
        return lead_service.add_note(db, user, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.post(
    "/{lead_id}/properties",
    response_model=PropertyInterestRead,
    status_code=status.HTTP_201_CREATED,
)
def add_property_interest(
    request: Request,
    lead_id: uuid.UUID,
    dto: PropertyInterestCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyInterestRead | JSONResponse:
    try:
        return lead_service.add_property_interest(db, user, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@leads_router.put("/{lead_id}/properties/{interest_id}", response_model=PropertyInterestRead)
def update_property_interest(
    request: Request,
    lead_id: uuid.UUID,
    interest_id: uuid.UUID,
    dto: PropertyInterestUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyInterestRead | JSONResponse:
    try:
        return lead_service.update_property_interest(db, user, lead_id, interest_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


# Tasks


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    is_completed: bool | None = Query(default=None),
    task_type: str | None = Query(default=None, alias="type"),
    lead_id: uuid.UUID | None = Query(default=None),
    assigned_to_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[TaskRead]:
    task_filter = TaskFilter(
        assigned_to_id=assigned_to_id,
        is_completed=is_completed,
        type=task_type,
        lead_id=lead_id,
    )
    return task_service.list_tasks(db, user, task_filter)


@tasks_router.get("/stats", response_model=TaskStats)
def get_task_stats(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> TaskStats:
    return task_service.get_stats(db, user)


@tasks_router.get("/follow-ups", response_model=list[FollowUpRead])
def list_follow_ups(
    window: Literal["overdue", "today", "upcoming"] | None = Query(default=None, alias="filter"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[FollowUpRead]:
    return task_service.list_follow_ups(db, user, window)


@tasks_router.get("/follow-ups/stats", response_model=FollowUpStats)
def get_follow_up_stats(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> FollowUpStats:
    return task_service.get_follow_up_stats(db, user)


@tasks_router.post("/cleanup-completed", response_model=TaskCleanupResult)
def cleanup_completed_tasks(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> TaskCleanupResult:
    return task_service.cleanup_completed(db, user)


@tasks_router.patch("/follow-ups/{lead_id}", response_model=LeadRead)
def clear_follow_up(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return task_service.clear_follow_up(db, user, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@tasks_router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> TaskRead | JSONResponse:
    try:
        return task_service.create_task(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@tasks_router.patch("/{task_id}", response_model=TaskRead)
def update_task(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> TaskRead | JSONResponse:
    try:
        return task_service.update_task(db, user, task_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@tasks_router.patch("/{task_id}/complete", response_model=TaskRead)
def toggle_task_complete(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> TaskRead | JSONResponse:
    try:
        return task_service.toggle_complete(db, user, task_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        task_service.delete_task(db, user, task_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Interactions


def _interaction_filter(
    lead_id: uuid.UUID | None = Query(default=None),
    interaction_type: str | None = Query(default=None, alias="type"),
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
) -> InteractionFilter:
    return InteractionFilter(
        lead_id=lead_id,
        type=interaction_type,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )


@interactions_router.get("", response_model=list[InteractionRead])
def list_interactions(
    interaction_filter: InteractionFilter = Depends(_interaction_filter),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[InteractionRead]:
    return interaction_service.list_interactions(db, user, interaction_filter, cursor=cursor, limit=limit)


@interactions_router.get("/stats", response_model=InteractionStats)
def get_interaction_stats(
    interaction_filter: InteractionFilter = Depends(_interaction_filter),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> InteractionStats:
    return interaction_service.get_stats(db, user, interaction_filter)


@interactions_router.post("", response_model=InteractionRead, status_code=status.HTTP_201_CREATED)
def create_interaction(
    request: Request,
    dto: InteractionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.create_interaction(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@interactions_router.post(
    "/leads/{lead_id}",
    response_model=InteractionRead,
    status_code=status.HTTP_201_CREATED,
)
def log_lead_interaction(
    request: Request,
    lead_id: uuid.UUID,
    dto: InteractionLog,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.log_for_lead(db, user, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@interactions_router.get("/{interaction_id}", response_model=InteractionRead)
def get_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.get_interaction(db, user, interaction_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@interactions_router.delete("/{interaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_interaction(
    request: Request,
    interaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        interaction_service.delete_interaction(db, user, interaction_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Properties


@properties_router.get("", response_model=list[PropertyRead])
def list_properties(
    property_type: str | None = Query(default=None),
    listing_status: list[str] | None = Query(default=None),
    city: str | None = Query(default=None),
    state: str | None = Query(default=None),
    zip_code: str | None = Query(default=None),
    min_price: float | None = Query(default=None, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    min_bedrooms: int | None = Query(default=None, ge=0),
    max_bedrooms: int | None = Query(default=None, ge=0),
    min_bathrooms: float | None = Query(default=None, ge=0),
    min_square_feet: int | None = Query(default=None, ge=0),
    max_square_feet: int | None = Query(default=None, ge=0),
    search: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[PropertyRead]:
    property_filter = PropertyFilter(
        property_type=property_type,
        city=city,
        state=state,
        zip_code=zip_code,
        min_price=min_price,
        max_price=max_price,
        min_bedrooms=min_bedrooms,
        max_bedrooms=max_bedrooms,
        min_bathrooms=min_bathrooms,
        min_square_feet=min_square_feet,
        max_square_feet=max_square_feet,
        search=search,
    )
    if listing_status:
        property_filter.listing_statuses = listing_status
    return property_service.list_properties(db, user, property_filter, cursor=cursor, limit=limit)


@properties_router.get("/stats", response_model=PropertyStats)
def get_property_stats(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyStats:
    return property_service.get_stats(db, user)


@properties_router.get("/match/{lead_id}", response_model=list[PropertyRead])
def match_properties_for_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[PropertyRead] | JSONResponse:
    try:
        return property_service.match_for_lead(db, user, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@properties_router.post("", response_model=PropertyRead, status_code=status.HTTP_201_CREATED)
def create_property(
    request: Request,
    dto: PropertyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyRead | JSONResponse:
    try:
        return property_service.create_property(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@properties_router.get("/{property_id}", response_model=PropertyRead)
def get_property(
    request: Request,
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyRead | JSONResponse:
    try:
        return property_service.get_property(db, user, property_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@properties_router.get("/{property_id}/interests", response_model=list[PropertyInterestRead])
def list_property_interests(
    request: Request,
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[PropertyInterestRead] | JSONResponse:
    try:
        return property_service.list_interests(db, user, property_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@properties_router.put("/{property_id}", response_model=PropertyRead)
def update_property(
    request: Request,
    property_id: uuid.UUID,
    dto: PropertyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> PropertyRead | JSONResponse:
    try:
        return property_service.update_property(db, user, property_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@properties_router.delete("/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_property(
    request: Request,
    property_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        property_service.delete_property(db, user, property_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
