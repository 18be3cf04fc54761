from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from app import audit, events
from app.core.auth import ActorUser
from app.core.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStageError,
    NotFoundError,
    ValidationError,
)
from app.crm.filters import InteractionFilter, LeadFilter, PropertyFilter, TaskFilter
from app.crm.models import (
    Campaign,
    CampaignAssignee,
    CampaignProperty,
    Interaction,
    Lead,
    Note,
    Pipeline,
    PipelineStage,
    Property,
    PropertyInterest,
    Task,
)
from app.crm.schemas import (
    BoardColumn,
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
    StageDistributionEntry,
    TaskCleanupResult,
    TaskCreate,
    TaskRead,
    TaskStats,
    TaskUpdate,
)
from app.metrics import observe_stage_transition
from app.users.service import user_service


logger = logging.getLogger("app.crm.leads")

# Appended to every new pipeline, in this order, after the caller's stages.
TERMINAL_STAGES = (("Closed Won", "#16a34a"), ("Closed Lost", "#dc2626"))
STAFF_MANAGER_ROLES = ("ADMIN", "MANAGER")
MATCH_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_role(actor_user: ActorUser, *roles: str) -> None:
    if actor_user.role not in roles:
        raise AccessDeniedError("Insufficient permissions", details={"required_roles": list(roles)})


def _event(actor_user: ActorUser, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    envelope = events.build_envelope(event_type, actor_user.user_id, payload)
    envelope["correlation_id"] = actor_user.correlation_id
    return envelope


def _stage_change_content(old_name: str, new_name: str) -> str:
    return f"Stage changed from {old_name} to {new_name}"


def _archive_content(reason: str | None) -> str:
    return f"Lead archived: {reason}" if reason else "Lead archived"


# Campaign access and metric aggregation


def visible_campaign_ids(session: Session, actor_user: ActorUser) -> list[uuid.UUID] | None:
    """Campaign ids the actor may see, or None when the actor sees every campaign."""
    if actor_user.is_staff_manager:
        return None
    return list(
        session.scalars(select(CampaignAssignee.campaign_id).where(CampaignAssignee.user_id == actor_user.user_id))
    )


def get_accessible_campaign(session: Session, actor_user: ActorUser, campaign_id: uuid.UUID) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if not actor_user.is_staff_manager:
        # Employees learn nothing about campaigns outside their assignments, existing or not.
        if campaign is None or actor_user.user_id not in campaign.assigned_to_ids:
            raise AccessDeniedError("Access denied to this campaign", details={"campaign_id": str(campaign_id)})
    if campaign is None:
        raise NotFoundError("Campaign not found", details={"campaign_id": str(campaign_id)})
    return campaign


def get_visible_lead(session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> Lead:
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError("Lead not found", details={"lead_id": str(lead_id)})
    get_accessible_campaign(session, actor_user, lead.campaign_id)
    return lead


def _active_lead_clause():  # type: ignore[no-untyped-def]
    # Archived leads leave open stages but keep counting in terminal ones.
    return or_(PipelineStage.is_final.is_(True), Lead.is_archived.is_(False))


def active_counts_by_stage(
    session: Session,
    stage_ids: list[uuid.UUID],
    campaign_id: uuid.UUID | None = None,
) -> dict[uuid.UUID, int]:
    if not stage_ids:
        return {}
    stmt = (
        select(Lead.current_stage_id, func.count(Lead.id))
        .join(PipelineStage, PipelineStage.id == Lead.current_stage_id)
        .where(Lead.current_stage_id.in_(stage_ids), _active_lead_clause())
        .group_by(Lead.current_stage_id)
    )
    if campaign_id is not None:
        stmt = stmt.where(Lead.campaign_id == campaign_id)
    return {stage_id: int(count) for stage_id, count in session.execute(stmt)}


def conversion_rate(session: Session, campaign_id: uuid.UUID) -> float:
    """Share of the campaign's leads, archived or not, sitting in a terminal "won" stage."""
    total = session.scalar(select(func.count(Lead.id)).where(Lead.campaign_id == campaign_id)) or 0
    if total == 0:
        return 0.0
    won = (
        session.scalar(
            select(func.count(Lead.id))
            .join(PipelineStage, PipelineStage.id == Lead.current_stage_id)
            .where(
                Lead.campaign_id == campaign_id,
                PipelineStage.is_final.is_(True),
                func.lower(PipelineStage.name).contains("won"),
            )
        )
        or 0
    )
    return won / total


class PipelineService:
    entity_type = "crm.pipeline"

    def create_pipeline(self, session: Session, actor_user: ActorUser, dto: PipelineCreate) -> PipelineRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        if not dto.stages:
            raise ValidationError("At least one stage is required", details={"stages": "required"})

        pipeline = Pipeline(
            name=dto.name.strip(),
            description=dto.description,
            type=dto.type,
            created_by_id=actor_user.user_id,
        )
        session.add(pipeline)
        session.flush()

        for index, stage_input in enumerate(dto.stages):
            session.add(
                PipelineStage(
                    pipeline_id=pipeline.id,
                    name=stage_input.name.strip(),
                    description=stage_input.description,
                    color=stage_input.color,
                    order=index,
                    is_default=stage_input.is_default or index == 0,
                    is_final=False,
                )
            )
        for offset, (name, color) in enumerate(TERMINAL_STAGES):
            session.add(
                PipelineStage(
                    pipeline_id=pipeline.id,
                    name=name,
                    color=color,
                    order=len(dto.stages) + offset,
                    is_default=False,
                    is_final=True,
                )
            )
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=pipeline.id,
            action="create",
            before=None,
            after={"name": pipeline.name, "type": pipeline.type, "stage_count": len(dto.stages) + len(TERMINAL_STAGES)},
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(actor_user, "crm.pipeline.created", {"pipeline_id": str(pipeline.id), "type": pipeline.type})
        session.commit()
        events.publish(envelope)
        return self._to_read(session, self._load(session, pipeline.id))

    def list_pipelines(self, session: Session, actor_user: ActorUser) -> list[PipelineRead]:
        pipelines = session.scalars(
            select(Pipeline)
            .where(Pipeline.is_active.is_(True))
            .options(selectinload(Pipeline.stages))
            .order_by(Pipeline.created_at.desc())
        ).all()
        campaign_counts = dict(
            session.execute(
                select(Campaign.pipeline_id, func.count(Campaign.id)).group_by(Campaign.pipeline_id)
            ).all()
        )
        result = []
        for pipeline in pipelines:
            read = self._to_read(session, pipeline)
            read.campaign_count = int(campaign_counts.get(pipeline.id, 0))
            result.append(read)
        return result

    def get_pipeline(self, session: Session, actor_user: ActorUser, pipeline_id: uuid.UUID) -> PipelineRead:
        pipeline = self._load(session, pipeline_id)
        read = self._to_read(session, pipeline, with_counts=True)
        read.campaign_count = int(
            session.scalar(select(func.count(Campaign.id)).where(Campaign.pipeline_id == pipeline.id)) or 0
        )
        return read

    def update_pipeline(
        self,
        session: Session,
        actor_user: ActorUser,
        pipeline_id: uuid.UUID,
        dto: PipelineUpdate,
    ) -> PipelineRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        pipeline = self._load(session, pipeline_id)
        before = {"name": pipeline.name, "description": pipeline.description, "is_active": pipeline.is_active}
        changes = dto.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is not None:
            pipeline.name = changes["name"].strip()
        if "description" in changes:
            pipeline.description = changes["description"]
        if changes.get("is_active") is not None:
            pipeline.is_active = changes["is_active"]
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=pipeline.id,
            action="update",
            before=before,
            after={"name": pipeline.name, "description": pipeline.description, "is_active": pipeline.is_active},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return self._to_read(session, self._load(session, pipeline.id))

    def insert_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        pipeline_id: uuid.UUID,
        dto: PipelineStageCreate,
    ) -> PipelineStageRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        pipeline = self._load(session, pipeline_id)
        stages = list(pipeline.stages)
        first_terminal = self._first_terminal_order(stages)

        requested = dto.order if dto.order is not None else max((stage.order for stage in stages), default=-1) + 1
        new_order = min(requested, first_terminal)
        for stage in stages:
            if stage.order >= new_order:
                stage.order += 1
        if dto.is_default:
            self._clear_defaults(stages)

        stage = PipelineStage(
            pipeline_id=pipeline.id,
            name=dto.name.strip(),
            description=dto.description,
            color=dto.color,
            order=new_order,
            is_default=dto.is_default,
            is_final=False,
        )
        session.add(stage)
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.stage",
            entity_id=stage.id,
            action="create",
            before=None,
            after={"pipeline_id": str(pipeline.id), "name": stage.name, "order": stage.order},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return PipelineStageRead.model_validate(stage)

    def update_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        pipeline_id: uuid.UUID,
        stage_id: uuid.UUID,
        dto: PipelineStageUpdate,
    ) -> PipelineStageRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        pipeline = self._load(session, pipeline_id)
        stages = list(pipeline.stages)
        stage = next((item for item in stages if item.id == stage_id), None)
        if stage is None:
            raise NotFoundError("Stage not found in this pipeline", details={"stage_id": str(stage_id)})

        before = PipelineStageRead.model_validate(stage).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)

        new_order = changes.get("order")
        if new_order is not None and new_order != stage.order:
            if stage.is_final:
                raise ConflictError("Terminal stages cannot be reordered", details={"stage_id": str(stage.id)})
            self._move_stage(stages, stage, min(new_order, self._first_terminal_order(stages) - 1))

        if changes.get("name") is not None:
            stage.name = changes["name"].strip()
        if "description" in changes:
            stage.description = changes["description"]
        if changes.get("color") is not None:
            stage.color = changes["color"]
        if changes.get("is_default") is not None:
            if changes["is_default"]:
                self._clear_defaults(stages)
            stage.is_default = changes["is_default"]
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.stage",
            entity_id=stage.id,
            action="update",
            before=before,
            after=PipelineStageRead.model_validate(stage).model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return PipelineStageRead.model_validate(stage)

    def delete_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        pipeline_id: uuid.UUID,
        stage_id: uuid.UUID,
    ) -> None:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        pipeline = self._load(session, pipeline_id)
        stages = list(pipeline.stages)
        stage = next((item for item in stages if item.id == stage_id), None)
        if stage is None:
            raise NotFoundError("Stage not found in this pipeline", details={"stage_id": str(stage_id)})
        if stage.is_final:
            raise ConflictError("Terminal stages cannot be deleted", details={"stage_id": str(stage.id)})

        leads_count = session.scalar(select(func.count(Lead.id)).where(Lead.current_stage_id == stage.id)) or 0
        if leads_count > 0:
            raise ConflictError("Cannot delete stage with active leads", details={"leads_count": int(leads_count)})

        removed_order = stage.order
        was_default = stage.is_default
        pipeline.stages.remove(stage)
        session.delete(stage)
        remaining = [item for item in stages if item.id != stage.id]
        for item in remaining:
            if item.order > removed_order:
                item.order -= 1
        if was_default and not any(item.is_default for item in remaining):
            open_stages = sorted((item for item in remaining if not item.is_final), key=lambda item: item.order)
            if open_stages:
                open_stages[0].is_default = True
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.stage",
            entity_id=stage_id,
            action="delete",
            before={"pipeline_id": str(pipeline.id), "name": stage.name, "order": removed_order},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()

    def _move_stage(self, stages: list[PipelineStage], stage: PipelineStage, new_order: int) -> None:
        old_order = stage.order
        new_order = max(0, new_order)
        if new_order < old_order:
            for item in stages:
                if item.id != stage.id and new_order <= item.order < old_order:
                    item.order += 1
        elif new_order > old_order:
            for item in stages:
                if item.id != stage.id and old_order < item.order <= new_order:
                    item.order -= 1
        stage.order = new_order

    def _first_terminal_order(self, stages: list[PipelineStage]) -> int:
        terminal_orders = [stage.order for stage in stages if stage.is_final]
        if terminal_orders:
            return min(terminal_orders)
        return max((stage.order for stage in stages), default=-1) + 1

    def _clear_defaults(self, stages: list[PipelineStage]) -> None:
        for stage in stages:
            stage.is_default = False

    def _load(self, session: Session, pipeline_id: uuid.UUID) -> Pipeline:
        pipeline = session.scalar(
            select(Pipeline).where(Pipeline.id == pipeline_id).options(selectinload(Pipeline.stages))
        )
        if pipeline is None:
            raise NotFoundError("Pipeline not found", details={"pipeline_id": str(pipeline_id)})
        return pipeline

    def _to_read(self, session: Session, pipeline: Pipeline, with_counts: bool = False) -> PipelineRead:
        stages = sorted(pipeline.stages, key=lambda stage: stage.order)
        counts = active_counts_by_stage(session, [stage.id for stage in stages]) if with_counts else {}
        stage_reads = []
        for stage in stages:
            stage_read = PipelineStageRead.model_validate(stage)
            if with_counts:
                stage_read.lead_count = counts.get(stage.id, 0)
            stage_reads.append(stage_read)
        return PipelineRead(
            id=pipeline.id,
            name=pipeline.name,
            description=pipeline.description,
            type=pipeline.type,
            is_active=pipeline.is_active,
            created_by_id=pipeline.created_by_id,
            created_at=pipeline.created_at,
            updated_at=pipeline.updated_at,
            stages=stage_reads,
        )


class CampaignService:
    entity_type = "crm.campaign"

    def list_campaigns(
        self,
        session: Session,
        actor_user: ActorUser,
        status_filter: str | None = None,
        pipeline_id: uuid.UUID | None = None,
    ) -> list[CampaignRead]:
        stmt: Select[tuple[Campaign]] = select(Campaign).options(selectinload(Campaign.assignees))
        visible = visible_campaign_ids(session, actor_user)
        if visible is not None:
            stmt = stmt.where(Campaign.id.in_(visible))
        if status_filter:
            stmt = stmt.where(Campaign.status == status_filter)
        if pipeline_id is not None:
            stmt = stmt.where(Campaign.pipeline_id == pipeline_id)
        campaigns = session.scalars(stmt.order_by(Campaign.created_at.desc())).all()
        lead_counts = self._lead_counts(session, [campaign.id for campaign in campaigns])
        return [self._to_read(campaign, lead_counts.get(campaign.id, 0)) for campaign in campaigns]

    def get_campaign(self, session: Session, actor_user: ActorUser, campaign_id: uuid.UUID) -> CampaignRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        return self._to_read(campaign, self._lead_counts(session, [campaign.id]).get(campaign.id, 0))

    def create_campaign(self, session: Session, actor_user: ActorUser, dto: CampaignCreate) -> CampaignRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        pipeline = session.get(Pipeline, dto.pipeline_id)
        if pipeline is None:
            raise NotFoundError("Pipeline not found", details={"pipeline_id": str(dto.pipeline_id)})
        assignee_ids = list(dict.fromkeys(dto.assigned_to_ids))
        missing = user_service.missing_user_ids(session, assignee_ids)
        if missing:
            raise ValidationError(
                "One or more assigned users not found",
                details={"missing_user_ids": sorted(str(user_id) for user_id in missing)},
            )

        campaign = Campaign(
            name=dto.name.strip(),
            description=dto.description,
            pipeline_id=pipeline.id,
            status=dto.status,
            start_date=dto.start_date or utcnow(),
            end_date=dto.end_date,
            budget=dto.budget,
            source=dto.source,
            source_details=dto.source_details,
            created_by_id=actor_user.user_id,
        )
        campaign.assignees = [CampaignAssignee(user_id=user_id) for user_id in assignee_ids]
        session.add(campaign)
        session.flush()

        after = self._to_read(campaign, 0)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=campaign.id,
            action="create",
            before=None,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.campaign.created",
            {"campaign_id": str(campaign.id), "pipeline_id": str(pipeline.id)},
        )
        session.commit()
        events.publish(envelope)
        return self.get_campaign(session, actor_user, campaign.id)

    def update_campaign(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        dto: CampaignUpdate,
    ) -> CampaignRead:
        _require_role(actor_user, *STAFF_MANAGER_ROLES)
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        before = self._to_read(campaign).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)

        assignee_ids = changes.pop("assigned_to_ids", None)
        if assignee_ids is not None:
            wanted = list(dict.fromkeys(assignee_ids))
            missing = user_service.missing_user_ids(session, wanted)
            if missing:
                raise ValidationError(
                    "One or more assigned users not found",
                    details={"missing_user_ids": sorted(str(user_id) for user_id in missing)},
                )
            self._sync_assignees(campaign, wanted)

        for field_name in ("description", "end_date", "budget", "actual_spend", "source", "source_details"):
            if field_name in changes:
                setattr(campaign, field_name, changes[field_name])
        if changes.get("name") is not None:
            campaign.name = changes["name"].strip()
        if changes.get("status") is not None:
            campaign.status = changes["status"]
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=campaign.id,
            action="update",
            before=before,
            after=self._to_read(campaign).model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return self.get_campaign(session, actor_user, campaign.id)

    def delete_campaign(self, session: Session, actor_user: ActorUser, campaign_id: uuid.UUID) -> None:
        _require_role(actor_user, "ADMIN")
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        leads_count = session.scalar(select(func.count(Lead.id)).where(Lead.campaign_id == campaign.id)) or 0
        if leads_count > 0:
            raise ConflictError(
                "Cannot delete campaign with existing leads",
                details={"leads_count": int(leads_count)},
            )
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=campaign.id,
            action="delete",
            before={"name": campaign.name, "pipeline_id": str(campaign.pipeline_id)},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(campaign)
        session.commit()

    def list_campaign_leads(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        stage_id: uuid.UUID | None = None,
        assigned_to_id: uuid.UUID | None = None,
        include_archived: bool = True,
    ) -> list[LeadRead]:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        lead_filter = LeadFilter(
            campaign_id=campaign.id,
            stage_id=stage_id,
            assigned_to_id=assigned_to_id,
            is_archived=None if include_archived else False,
        )
        leads = session.scalars(lead_filter.apply(select(Lead)).order_by(Lead.created_at.desc())).all()
        return [LeadRead.model_validate(lead) for lead in leads]

    def get_stats(self, session: Session, actor_user: ActorUser, campaign_id: uuid.UUID) -> CampaignStats:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        stages = self._pipeline_stages(session, campaign.pipeline_id)
        counts = active_counts_by_stage(session, [stage.id for stage in stages], campaign_id=campaign.id)

        total_leads = session.scalar(select(func.count(Lead.id)).where(Lead.campaign_id == campaign.id)) or 0
        active_leads = (
            session.scalar(
                select(func.count(Lead.id)).where(Lead.campaign_id == campaign.id, Lead.is_archived.is_(False))
            )
            or 0
        )
        spend = campaign.actual_spend if campaign.actual_spend else campaign.budget
        cost_per_lead = round(spend / total_leads, 2) if spend and total_leads > 0 else None

        return CampaignStats(
            campaign_id=campaign.id,
            total_leads=int(total_leads),
            active_leads=int(active_leads),
            budget=campaign.budget,
            actual_spend=campaign.actual_spend,
            cost_per_lead=cost_per_lead,
            conversion_rate=conversion_rate(session, campaign.id),
            stage_distribution=[
                StageDistributionEntry(
                    stage_id=stage.id,
                    stage_name=stage.name,
                    color=stage.color,
                    order=stage.order,
                    is_final=stage.is_final,
                    count=counts.get(stage.id, 0),
                )
                for stage in stages
            ],
        )

    def get_board(self, session: Session, actor_user: ActorUser, campaign_id: uuid.UUID) -> CampaignBoard:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        stages = self._pipeline_stages(session, campaign.pipeline_id)
        leads = session.scalars(
            select(Lead)
            .join(PipelineStage, PipelineStage.id == Lead.current_stage_id)
            .where(Lead.campaign_id == campaign.id, _active_lead_clause())
            .order_by(Lead.updated_at.desc())
        ).all()
        by_stage: dict[uuid.UUID, list[LeadRead]] = {stage.id: [] for stage in stages}
        for lead in leads:
            by_stage.setdefault(lead.current_stage_id, []).append(LeadRead.model_validate(lead))
        return CampaignBoard(
            campaign_id=campaign.id,
            pipeline_id=campaign.pipeline_id,
            columns=[
                BoardColumn(
                    stage=PipelineStageRead.model_validate(stage),
                    count=len(by_stage[stage.id]),
                    leads=by_stage[stage.id],
                )
                for stage in stages
            ],
        )

    def list_properties(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
    ) -> list[CampaignPropertyRead]:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        links = session.scalars(
            select(CampaignProperty)
            .where(CampaignProperty.campaign_id == campaign.id)
            .options(selectinload(CampaignProperty.property))
            .order_by(CampaignProperty.order.asc(), CampaignProperty.added_at.desc())
        ).all()
        return [CampaignPropertyRead.model_validate(link) for link in links]

    def add_property(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        dto: CampaignPropertyCreate,
    ) -> CampaignPropertyRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        if session.get(Property, dto.property_id) is None:
            raise NotFoundError("Property not found", details={"property_id": str(dto.property_id)})
        if self._find_link(session, campaign.id, dto.property_id) is not None:
            raise ConflictError("Property already added to this campaign", details={"property_id": str(dto.property_id)})

        link_count = session.scalar(
            select(func.count(CampaignProperty.id)).where(CampaignProperty.campaign_id == campaign.id)
        )
        order = dto.order if "order" in dto.model_fields_set else int(link_count or 0)
        link = CampaignProperty(
            campaign_id=campaign.id,
            property_id=dto.property_id,
            is_featured=dto.is_featured,
            order=order,
            notes=dto.notes,
        )
        session.add(link)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.property",
            entity_id=link.id,
            action="create",
            before=None,
            after={"campaign_id": str(campaign.id), "property_id": str(dto.property_id)},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return CampaignPropertyRead.model_validate(self._find_link(session, campaign.id, dto.property_id))

    def update_property(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        property_id: uuid.UUID,
        dto: CampaignPropertyUpdate,
    ) -> CampaignPropertyRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        link = self._find_link(session, campaign.id, property_id)
        if link is None:
            raise NotFoundError("Property not found in this campaign", details={"property_id": str(property_id)})
        changes = dto.model_dump(exclude_unset=True)
        if changes.get("is_featured") is not None:
            link.is_featured = changes["is_featured"]
        if changes.get("order") is not None:
            link.order = changes["order"]
        if "notes" in changes:
            link.notes = changes["notes"]
        session.commit()
        return CampaignPropertyRead.model_validate(self._find_link(session, campaign.id, property_id))

    def remove_property(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        property_id: uuid.UUID,
    ) -> None:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        link = self._find_link(session, campaign.id, property_id)
        if link is None:
            raise NotFoundError("Property not found in this campaign", details={"property_id": str(property_id)})
        session.delete(link)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.property",
            entity_id=link.id,
            action="delete",
            before={"campaign_id": str(campaign.id), "property_id": str(property_id)},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()

    def bulk_add_properties(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        dto: CampaignPropertyBulkAdd,
    ) -> CampaignPropertyBulkResult:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        requested = list(dict.fromkeys(dto.property_ids))
        existing = set(
            session.scalars(
                select(CampaignProperty.property_id).where(
                    CampaignProperty.campaign_id == campaign.id,
                    CampaignProperty.property_id.in_(requested),
                )
            )
        )
        new_ids = [property_id for property_id in requested if property_id not in existing]
        if not new_ids:
            raise ConflictError("All properties already added to this campaign")

        found = set(session.scalars(select(Property.id).where(Property.id.in_(new_ids))))
        missing = [str(property_id) for property_id in new_ids if property_id not in found]
        if missing:
            raise NotFoundError("One or more properties not found", details={"missing_property_ids": missing})

        next_order = int(
            session.scalar(select(func.count(CampaignProperty.id)).where(CampaignProperty.campaign_id == campaign.id))
            or 0
        )
        for index, property_id in enumerate(new_ids):
            session.add(
                CampaignProperty(
                    campaign_id=campaign.id,
                    property_id=property_id,
                    is_featured=dto.is_featured,
                    order=next_order + index,
                )
            )
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.property",
            entity_id=campaign.id,
            action="bulk_create",
            before=None,
            after={"property_ids": [str(property_id) for property_id in new_ids]},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return CampaignPropertyBulkResult(added=len(new_ids), skipped=len(existing))

    def _sync_assignees(self, campaign: Campaign, wanted: list[uuid.UUID]) -> None:
        wanted_set = set(wanted)
        for assignee in list(campaign.assignees):
            if assignee.user_id not in wanted_set:
                campaign.assignees.remove(assignee)
        current = {assignee.user_id for assignee in campaign.assignees}
        for user_id in wanted:
            if user_id not in current:
                campaign.assignees.append(CampaignAssignee(user_id=user_id))

    def _find_link(self, session: Session, campaign_id: uuid.UUID, property_id: uuid.UUID) -> CampaignProperty | None:
        return session.scalar(
            select(CampaignProperty)
            .where(CampaignProperty.campaign_id == campaign_id, CampaignProperty.property_id == property_id)
            .options(selectinload(CampaignProperty.property))
        )

    def _pipeline_stages(self, session: Session, pipeline_id: uuid.UUID) -> list[PipelineStage]:
        return list(
            session.scalars(
                select(PipelineStage).where(PipelineStage.pipeline_id == pipeline_id).order_by(PipelineStage.order)
            )
        )

    def _lead_counts(self, session: Session, campaign_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not campaign_ids:
            return {}
        rows = session.execute(
            select(Lead.campaign_id, func.count(Lead.id)).where(Lead.campaign_id.in_(campaign_ids)).group_by(Lead.campaign_id)
        )
        return {campaign_id: int(count) for campaign_id, count in rows}

    def _to_read(self, campaign: Campaign, lead_count: int | None = None) -> CampaignRead:
        read = CampaignRead.model_validate(campaign)
        read.lead_count = lead_count
        return read


class FollowUpTaskSync:
    """Keeps the single open FOLLOW_UP task of a lead aligned with its next_follow_up_at."""

    def sync(self, session: Session, actor_user: ActorUser, lead: Lead) -> Task | None:
        task = self.open_task(session, lead.id)
        if lead.next_follow_up_at is None:
            if task is not None:
                self._complete(task)
            return task

        assignee_id = lead.assigned_to_id or actor_user.user_id
        if task is not None:
            task.due_date = lead.next_follow_up_at
            task.assigned_to_id = assignee_id
            return task

        description = f"Follow-up scheduled for lead {lead.first_name} {lead.last_name}"
        if lead.email:
            description = f"{description} ({lead.email})"
        task = Task(
            title=f"Follow up with {lead.first_name} {lead.last_name}",
            description=description,
            type="FOLLOW_UP",
            priority=lead.priority or "MEDIUM",
            due_date=lead.next_follow_up_at,
            lead_id=lead.id,
            assigned_to_id=assignee_id,
            created_by_id=actor_user.user_id,
        )
        session.add(task)
        session.flush()
        return task

    def open_task(self, session: Session, lead_id: uuid.UUID) -> Task | None:
        return session.scalar(
            select(Task)
            .where(Task.lead_id == lead_id, Task.type == "FOLLOW_UP", Task.is_completed.is_(False))
            .order_by(Task.created_at.desc())
            .limit(1)
        )

    def _complete(self, task: Task) -> None:
        task.is_completed = True
        task.completed_at = utcnow()


follow_up_sync = FollowUpTaskSync()


class LeadService:
    entity_type = "crm.lead"

    def change_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        lead_id: uuid.UUID,
        dto: LeadStageChangeRequest,
    ) -> LeadRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        lead = self._get_campaign_lead(session, campaign, lead_id)
        stage = self._get_pipeline_stage(session, campaign, dto.stage_id)

        old_stage = lead.current_stage
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        lead.current_stage_id = stage.id
        lead.row_version += 1
        self._log_interaction(
            session,
            actor_user,
            lead,
            "STAGE_CHANGE",
            _stage_change_content(old_stage.name, stage.name),
        )
        session.flush()

        after = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="change_stage",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.lead.stage_changed",
            {
                "lead_id": str(lead.id),
                "campaign_id": str(campaign.id),
                "from_stage_id": str(old_stage.id),
                "stage_id": str(stage.id),
            },
        )
        session.commit()
        events.publish(envelope)
        observe_stage_transition("move")
        logger.info(
            "lead.stage_changed",
            extra={
                "lead_id": str(lead.id),
                "campaign_id": str(campaign.id),
                "from_stage_id": str(old_stage.id),
                "stage_id": str(stage.id),
            },
        )
        return after

    def set_archived(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        lead_id: uuid.UUID,
        dto: LeadArchiveRequest,
    ) -> LeadRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        lead = self._get_campaign_lead(session, campaign, lead_id)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        self._apply_archive(session, actor_user, lead, dto.is_archived, dto.reason)
        session.flush()

        after = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="archive" if dto.is_archived else "unarchive",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.lead.archived" if dto.is_archived else "crm.lead.unarchived",
            {"lead_id": str(lead.id), "campaign_id": str(campaign.id), "reason": lead.archived_reason},
        )
        session.commit()
        events.publish(envelope)
        return after

    def bulk_archive(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        dto: LeadBulkArchiveRequest,
    ) -> LeadBulkArchiveResult:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        lead_ids = list(dict.fromkeys(dto.lead_ids))
        leads = session.scalars(select(Lead).where(Lead.id.in_(lead_ids), Lead.campaign_id == campaign.id)).all()
        if len(leads) != len(lead_ids):
            found = {lead.id for lead in leads}
            raise ValidationError(
                "One or more leads not found or don't belong to this campaign",
                details={"lead_ids": [str(lead_id) for lead_id in lead_ids if lead_id not in found]},
            )

        envelopes = []
        for lead in leads:
            self._apply_archive(session, actor_user, lead, True, dto.reason)
            audit.record(
                actor_user_id=actor_user.user_id,
                entity_type=self.entity_type,
                entity_id=lead.id,
                action="archive",
                before=None,
                after={"is_archived": True, "archived_reason": lead.archived_reason},
                correlation_id=actor_user.correlation_id,
            )
            envelopes.append(
                _event(
                    actor_user,
                    "crm.lead.archived",
                    {"lead_id": str(lead.id), "campaign_id": str(campaign.id), "reason": lead.archived_reason},
                )
            )
        session.commit()
        for envelope in envelopes:
            events.publish(envelope)
        return LeadBulkArchiveResult(archived_count=len(leads))

    def convert_to_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        campaign_id: uuid.UUID,
        lead_id: uuid.UUID,
        dto: LeadConvertRequest,
    ) -> LeadRead:
        campaign = get_accessible_campaign(session, actor_user, campaign_id)
        lead = self._get_campaign_lead(session, campaign, lead_id)
        if not lead.is_archived:
            raise ConflictError("Lead is not archived", details={"lead_id": str(lead.id)})
        stage = session.get(PipelineStage, dto.stage_id)
        if stage is None or stage.pipeline_id != campaign.pipeline_id:
            raise InvalidStageError(
                "Invalid stage for this campaign's pipeline",
                details={"stage_id": str(dto.stage_id), "pipeline_id": str(campaign.pipeline_id)},
            )
        if stage.is_final:
            raise InvalidStageError(
                "Archived leads can only be restored into an open stage",
                details={"stage_id": str(stage.id)},
            )

        old_stage = lead.current_stage
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        lead.is_archived = False
        lead.archived_at = None
        lead.archived_reason = None
        lead.current_stage_id = stage.id
        lead.row_version += 1
        self._log_interaction(
            session,
            actor_user,
            lead,
            "NOTE",
            f"Lead converted back from archived (was in {old_stage.name})",
        )
        self._log_interaction(session, actor_user, lead, "STAGE_CHANGE", _stage_change_content(old_stage.name, stage.name))
        session.flush()

        after = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="convert_to_lead",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.lead.converted_back",
            {
                "lead_id": str(lead.id),
                "campaign_id": str(campaign.id),
                "from_stage_id": str(old_stage.id),
                "stage_id": str(stage.id),
            },
        )
        session.commit()
        events.publish(envelope)
        observe_stage_transition("convert")
        return after

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate) -> LeadRead:
        campaign = get_accessible_campaign(session, actor_user, dto.campaign_id)
        stage = session.get(PipelineStage, dto.current_stage_id)
        if stage is None or stage.pipeline_id != campaign.pipeline_id:
            raise InvalidStageError(
                "Stage does not belong to the campaign's pipeline",
                details={"stage_id": str(dto.current_stage_id)},
            )

        lead = self.build_lead(actor_user, dto)
        session.add(lead)
        session.flush()
        if dto.initial_notes:
            session.add(Note(lead_id=lead.id, content=dto.initial_notes, author_id=actor_user.user_id))
        follow_up_sync.sync(session, actor_user, lead)
        session.flush()

        after = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="create",
            before=None,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.lead.created",
            {"lead_id": str(lead.id), "campaign_id": str(campaign.id), "stage_id": str(stage.id)},
        )
        session.commit()
        events.publish(envelope)
        return after

    def build_lead(self, actor_user: ActorUser, dto: LeadCreate) -> Lead:
        values = dto.model_dump(exclude={"email"})
        values["email"] = str(dto.email) if dto.email is not None else None
        if values.get("assigned_to_id") is None:
            values["assigned_to_id"] = actor_user.user_id
        return Lead(**values, created_by_id=actor_user.user_id)

    def list_leads(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_filter: LeadFilter,
        cursor: str | None = None,
        limit: int = 100,
    ) -> list[LeadRead]:
        lead_filter.visible_campaign_ids = visible_campaign_ids(session, actor_user)
        offset = int(cursor) if cursor and cursor.isdigit() else 0
        leads = session.scalars(
            lead_filter.apply(select(Lead)).order_by(Lead.created_at.desc()).offset(offset).limit(limit)
        ).all()
        return [LeadRead.model_validate(lead) for lead in leads]

    def get_stats(self, session: Session, actor_user: ActorUser) -> LeadStats:
        base = LeadFilter(is_archived=False, visible_campaign_ids=visible_campaign_ids(session, actor_user))
        total = session.scalar(base.apply(select(func.count(Lead.id)))) or 0
        by_type = dict(session.execute(base.apply(select(Lead.lead_type, func.count(Lead.id))).group_by(Lead.lead_type)).all())
        by_priority = dict(
            session.execute(base.apply(select(Lead.priority, func.count(Lead.id))).group_by(Lead.priority)).all()
        )
        now = utcnow()
        upcoming = (
            session.scalar(
                base.apply(select(func.count(Lead.id))).where(
                    Lead.next_follow_up_at >= now,
                    Lead.next_follow_up_at <= now + timedelta(days=7),
                )
            )
            or 0
        )
        return LeadStats(
            total=int(total),
            by_type={key: int(value) for key, value in by_type.items()},
            by_priority={key: int(value) for key, value in by_priority.items()},
            upcoming_follow_ups=int(upcoming),
        )

    def get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadDetailRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        return LeadDetailRead.model_validate(lead)

    def update_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        campaign = lead.campaign
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)

        new_stage_id = changes.pop("current_stage_id", None)
        old_stage = lead.current_stage
        if new_stage_id is not None and new_stage_id != lead.current_stage_id:
            new_stage = session.get(PipelineStage, new_stage_id)
            if new_stage is None or new_stage.pipeline_id != campaign.pipeline_id:
                raise InvalidStageError(
                    "Stage does not belong to the campaign's pipeline",
                    details={"stage_id": str(new_stage_id)},
                )
            lead.current_stage_id = new_stage.id
            self._log_interaction(
                session,
                actor_user,
                lead,
                "STAGE_CHANGE",
                _stage_change_content(old_stage.name, new_stage.name),
            )

        archive_flag = changes.pop("is_archived", None)
        archive_reason = changes.pop("archived_reason", None)
        if archive_flag is not None and archive_flag != lead.is_archived:
            self._apply_archive(session, actor_user, lead, archive_flag, archive_reason)
        elif archive_reason is not None and lead.is_archived:
            lead.archived_reason = archive_reason

        follow_up_changed = "next_follow_up_at" in changes
        if "email" in changes:
            changes["email"] = str(changes["email"]) if changes["email"] is not None else None
        for field_name, value in changes.items():
            if value is None and field_name in {"first_name", "last_name", "lead_type", "priority"}:
                continue
            setattr(lead, field_name, value)
        lead.row_version += 1
        if follow_up_changed:
            follow_up_sync.sync(session, actor_user, lead)
        session.flush()

        after = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="update",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        envelope = _event(
            actor_user,
            "crm.lead.updated",
            {"lead_id": str(lead.id), "campaign_id": str(campaign.id), "changed_fields": sorted(dto.model_fields_set)},
        )
        session.commit()
        events.publish(envelope)
        if new_stage_id is not None and new_stage_id != old_stage.id:
            observe_stage_transition("update")
        return after

    def delete_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> None:
        _require_role(actor_user, "ADMIN")
        lead = get_visible_lead(session, actor_user, lead_id)
        for task in list(lead.tasks):
            task.lead_id = None
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=lead.id,
            action="delete",
            before=LeadRead.model_validate(lead).model_dump(mode="json"),
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(lead)
        session.commit()

    def add_note(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID, dto: NoteCreate) -> NoteRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        note = Note(lead_id=lead.id, content=dto.content, is_pinned=dto.is_pinned, author_id=actor_user.user_id)
        session.add(note)
        session.commit()
        return NoteRead.model_validate(note)

    def list_notes(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> list[NoteRead]:
        lead = get_visible_lead(session, actor_user, lead_id)
        notes = session.scalars(
            select(Note).where(Note.lead_id == lead.id).order_by(Note.is_pinned.desc(), Note.created_at.desc())
        ).all()
        return [NoteRead.model_validate(note) for note in notes]

    def add_property_interest(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: PropertyInterestCreate,
    ) -> PropertyInterestRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        listing = session.get(Property, dto.property_id)
        if listing is None:
            raise NotFoundError("Property not found", details={"property_id": str(dto.property_id)})
        existing = session.scalar(
            select(PropertyInterest).where(
                PropertyInterest.lead_id == lead.id,
                PropertyInterest.property_id == listing.id,
            )
        )
        if existing is not None:
            raise ConflictError(
                "Lead already has an interest in this property",
                details={"interest_id": str(existing.id)},
            )

        interest = PropertyInterest(lead_id=lead.id, **dto.model_dump())
        session.add(interest)
        if dto.status == "TOURED" or dto.viewed_at is not None:
            self._log_showing(session, actor_user, lead, listing, dto.viewed_at)
        session.commit()
        return PropertyInterestRead.model_validate(interest)

    def update_property_interest(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        interest_id: uuid.UUID,
        dto: PropertyInterestUpdate,
    ) -> PropertyInterestRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        interest = session.get(PropertyInterest, interest_id)
        if interest is None or interest.lead_id != lead.id:
            raise NotFoundError("Property interest not found", details={"interest_id": str(interest_id)})

        changes = dto.model_dump(exclude_unset=True)
        if changes.get("status") is not None:
            interest.status = changes["status"]
        for field_name in ("notes", "viewed_at", "rating"):
            if field_name in changes:
                setattr(interest, field_name, changes[field_name])
        if changes.get("status") == "TOURED" or changes.get("viewed_at") is not None:
            self._log_showing(session, actor_user, lead, interest.property, changes.get("viewed_at"))
        session.commit()
        return PropertyInterestRead.model_validate(interest)

    def _apply_archive(
        self,
        session: Session,
        actor_user: ActorUser,
        lead: Lead,
        archived: bool,
        reason: str | None,
    ) -> None:
        # Archive state is independent of the stage; current_stage_id never changes here.
        if archived:
            lead.is_archived = True
            lead.archived_at = utcnow()
            lead.archived_reason = reason or None
            content = _archive_content(reason)
        else:
            lead.is_archived = False
            lead.archived_at = None
            lead.archived_reason = None
            content = "Lead unarchived"
        lead.row_version += 1
        self._log_interaction(session, actor_user, lead, "NOTE", content)

    def _log_showing(
        self,
        session: Session,
        actor_user: ActorUser,
        lead: Lead,
        listing: Property,
        viewed_at: datetime | None,
    ) -> None:
        self._log_interaction(
            session,
            actor_user,
            lead,
            "PROPERTY_SHOWING",
            f"Property showing at {listing.address}, {listing.city}",
            subject="Property showing",
            occurred_at=viewed_at,
        )

    def _log_interaction(
        self,
        session: Session,
        actor_user: ActorUser,
        lead: Lead,
        interaction_type: str,
        content: str,
        *,
        subject: str | None = None,
        occurred_at: datetime | None = None,
    ) -> Interaction:
        interaction = Interaction(
            lead_id=lead.id,
            type=interaction_type,
            subject=subject,
            content=content,
            occurred_at=occurred_at or utcnow(),
            created_by_id=actor_user.user_id,
        )
        session.add(interaction)
        return interaction

    def _get_campaign_lead(self, session: Session, campaign: Campaign, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("Lead not found", details={"lead_id": str(lead_id)})
        if lead.campaign_id != campaign.id:
            raise ValidationError(
                "Lead does not belong to this campaign",
                details={"lead_id": str(lead.id), "campaign_id": str(campaign.id)},
            )
        return lead

    def _get_pipeline_stage(self, session: Session, campaign: Campaign, stage_id: uuid.UUID) -> PipelineStage:
        stage = session.get(PipelineStage, stage_id)
        if stage is None:
            raise NotFoundError("Stage not found", details={"stage_id": str(stage_id)})
        if stage.pipeline_id != campaign.pipeline_id:
            raise InvalidStageError(
                "Stage does not belong to the campaign's pipeline",
                details={"stage_id": str(stage.id), "pipeline_id": str(campaign.pipeline_id)},
            )
        return stage


class TaskService:
    entity_type = "crm.task"

    def list_tasks(self, session: Session, actor_user: ActorUser, task_filter: TaskFilter) -> list[TaskRead]:
        stmt = task_filter.apply(select(Task))
        if not actor_user.is_staff_manager:
            stmt = stmt.where(or_(Task.assigned_to_id == actor_user.user_id, Task.created_by_id == actor_user.user_id))
        tasks = session.scalars(stmt.order_by(Task.is_completed.asc(), Task.due_date.asc())).all()
        return [TaskRead.model_validate(task) for task in tasks]

    def get_stats(self, session: Session, actor_user: ActorUser) -> TaskStats:
        scope = [] if actor_user.is_staff_manager else [Task.assigned_to_id == actor_user.user_id]
        now = utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1)

        def count(*conditions: Any) -> int:
            return int(session.scalar(select(func.count(Task.id)).where(*scope, *conditions)) or 0)

        total = count()
        completed = count(Task.is_completed.is_(True))
        return TaskStats(
            total=total,
            completed=completed,
            pending=total - completed,
            overdue=count(Task.is_completed.is_(False), Task.due_date < now),
            due_today=count(Task.is_completed.is_(False), Task.due_date >= start_of_day, Task.due_date < end_of_day),
        )

    def create_task(self, session: Session, actor_user: ActorUser, dto: TaskCreate) -> TaskRead:
        if dto.lead_id is not None:
            get_visible_lead(session, actor_user, dto.lead_id)
        task = Task(
            title=dto.title,
            description=dto.description,
            priority=dto.priority,
            type=dto.type,
            due_date=dto.due_date,
            lead_id=dto.lead_id,
            assigned_to_id=dto.assigned_to_id or actor_user.user_id,
            created_by_id=actor_user.user_id,
        )
        session.add(task)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=task.id,
            action="create",
            before=None,
            after={"title": task.title, "type": task.type, "lead_id": str(task.lead_id) if task.lead_id else None},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return TaskRead.model_validate(task)

    def update_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: TaskUpdate) -> TaskRead:
        task = self._get_owned(session, actor_user, task_id)
        changes = dto.model_dump(exclude_unset=True)
        completed = changes.pop("is_completed", None)
        for field_name, value in changes.items():
            if value is None and field_name != "description":
                continue
            setattr(task, field_name, value)
        if completed is not None and completed != task.is_completed:
            task.is_completed = completed
            task.completed_at = utcnow() if completed else None
        session.commit()
        return TaskRead.model_validate(task)

    def toggle_complete(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> TaskRead:
        task = self._get_owned(session, actor_user, task_id)
        task.is_completed = not task.is_completed
        task.completed_at = utcnow() if task.is_completed else None
        session.commit()
        return TaskRead.model_validate(task)

    def delete_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> None:
        task = self._get_owned(session, actor_user, task_id)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=task.id,
            action="delete",
            before={"title": task.title, "type": task.type},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(task)
        session.commit()

    def cleanup_completed(self, session: Session, actor_user: ActorUser) -> TaskCleanupResult:
        """Delete completed tasks whose completion is more than a day old."""
        stmt = select(Task).where(Task.is_completed.is_(True), Task.completed_at < utcnow() - timedelta(days=1))
        if not actor_user.is_staff_manager:
            stmt = stmt.where(or_(Task.assigned_to_id == actor_user.user_id, Task.created_by_id == actor_user.user_id))
        tasks = session.scalars(stmt).all()
        for task in tasks:
            audit.record(
                actor_user_id=actor_user.user_id,
                entity_type=self.entity_type,
                entity_id=task.id,
                action="delete",
                before={"title": task.title, "type": task.type},
                after=None,
                correlation_id=actor_user.correlation_id,
            )
            session.delete(task)
        session.commit()
        logger.info("task.cleanup", extra={"deleted": len(tasks), "actor_user_id": str(actor_user.user_id)})
        return TaskCleanupResult(deleted=len(tasks))

    def get_follow_up_stats(self, session: Session, actor_user: ActorUser) -> FollowUpStats:
        return FollowUpStats(
            due_today=self._count_follow_ups(session, actor_user, "today"),
            upcoming=self._count_follow_ups(session, actor_user, "upcoming"),
            overdue=self._count_follow_ups(session, actor_user, "overdue"),
        )

    def list_follow_ups(
        self,
        session: Session,
        actor_user: ActorUser,
        window: str | None = None,
    ) -> list[FollowUpRead]:
        stmt = self._follow_up_query(session, actor_user, select(Lead), window)
        leads = session.scalars(stmt.order_by(Lead.next_follow_up_at.asc())).all()

        result = []
        for lead in leads:
            task = follow_up_sync.open_task(session, lead.id)
            result.append(
                FollowUpRead(
                    lead_id=lead.id,
                    first_name=lead.first_name,
                    last_name=lead.last_name,
                    email=lead.email,
                    mobile=lead.mobile,
                    campaign_id=lead.campaign_id,
                    priority=lead.priority,
                    assigned_to_id=lead.assigned_to_id,
                    next_follow_up_at=lead.next_follow_up_at,
                    task_id=task.id if task is not None else None,
                )
            )
        return result

    def clear_follow_up(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        lead.next_follow_up_at = None
        lead.row_version += 1
        follow_up_sync.sync(session, actor_user, lead)
        session.commit()
        return LeadRead.model_validate(lead)

    def _follow_up_query(self, session: Session, actor_user: ActorUser, stmt: Select, window: str | None) -> Select:
        now = utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1)
        lead_filter = LeadFilter(is_archived=False, visible_campaign_ids=visible_campaign_ids(session, actor_user))
        stmt = lead_filter.apply(stmt).where(Lead.next_follow_up_at.is_not(None))
        if not actor_user.is_staff_manager:
            stmt = stmt.where(Lead.assigned_to_id == actor_user.user_id)
        if window == "overdue":
            stmt = stmt.where(Lead.next_follow_up_at < now)
        elif window == "today":
            stmt = stmt.where(Lead.next_follow_up_at >= start_of_day, Lead.next_follow_up_at < end_of_day)
        elif window == "upcoming":
            stmt = stmt.where(Lead.next_follow_up_at >= end_of_day)
        return stmt

    def _count_follow_ups(self, session: Session, actor_user: ActorUser, window: str) -> int:
        stmt = self._follow_up_query(session, actor_user, select(func.count(Lead.id)), window)
        return int(session.scalar(stmt) or 0)

    def _get_owned(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found", details={"task_id": str(task_id)})
        if not actor_user.is_staff_manager and actor_user.user_id not in {task.assigned_to_id, task.created_by_id}:
            raise AccessDeniedError("Access denied to this task", details={"task_id": str(task_id)})
        return task


class InteractionService:
    entity_type = "crm.interaction"

    def list_interactions(
        self,
        session: Session,
        actor_user: ActorUser,
        interaction_filter: InteractionFilter,
        cursor: str | None = None,
        limit: int = 100,
    ) -> list[InteractionRead]:
        interaction_filter.visible_campaign_ids = visible_campaign_ids(session, actor_user)
        offset = int(cursor) if cursor and cursor.isdigit() else 0
        interactions = session.scalars(
            interaction_filter.apply(select(Interaction))
            .order_by(Interaction.occurred_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [InteractionRead.model_validate(interaction) for interaction in interactions]

    def get_stats(self, session: Session, actor_user: ActorUser, interaction_filter: InteractionFilter) -> InteractionStats:
        interaction_filter.visible_campaign_ids = visible_campaign_ids(session, actor_user)
        rows = session.execute(
            interaction_filter.apply(select(Interaction.type, func.count(Interaction.id))).group_by(Interaction.type)
        ).all()
        by_type = {interaction_type: int(count) for interaction_type, count in rows}
        return InteractionStats(total=sum(by_type.values()), by_type=by_type)

    def get_interaction(self, session: Session, actor_user: ActorUser, interaction_id: uuid.UUID) -> InteractionRead:
        interaction = session.get(Interaction, interaction_id)
        if interaction is None:
            raise NotFoundError("Interaction not found", details={"interaction_id": str(interaction_id)})
        get_visible_lead(session, actor_user, interaction.lead_id)
        return InteractionRead.model_validate(interaction)

    def create_interaction(self, session: Session, actor_user: ActorUser, dto: InteractionCreate) -> InteractionRead:
        return self.log_for_lead(session, actor_user, dto.lead_id, dto)

    def log_for_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: InteractionLog,
    ) -> InteractionRead:
        lead = get_visible_lead(session, actor_user, lead_id)
        occurred_at = dto.occurred_at or utcnow()
        interaction = Interaction(
            lead_id=lead.id,
            type=dto.type,
            subject=dto.subject,
            content=dto.content,
            direction=dto.direction,
            duration=dto.duration,
            phone_number=dto.phone_number,
            email_from=str(dto.email_from) if dto.email_from else None,
            email_to=str(dto.email_to) if dto.email_to else None,
            occurred_at=occurred_at,
            created_by_id=actor_user.user_id,
        )
        session.add(interaction)
        lead.last_contacted_at = occurred_at
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=interaction.id,
            action="create",
            before=None,
            after={"lead_id": str(lead.id), "type": interaction.type},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return InteractionRead.model_validate(interaction)

    def delete_interaction(self, session: Session, actor_user: ActorUser, interaction_id: uuid.UUID) -> None:
        interaction = session.get(Interaction, interaction_id)
        if interaction is None:
            raise NotFoundError("Interaction not found", details={"interaction_id": str(interaction_id)})
        if not actor_user.is_admin and interaction.created_by_id != actor_user.user_id:
            raise AccessDeniedError("Only the author or an administrator can delete this interaction")
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=interaction.id,
            action="delete",
            before={"lead_id": str(interaction.lead_id), "type": interaction.type},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(interaction)
        session.commit()


class PropertyService:
    entity_type = "crm.property"

    def list_properties(
        self,
        session: Session,
        actor_user: ActorUser,
        property_filter: PropertyFilter,
        cursor: str | None = None,
        limit: int = 100,
    ) -> list[PropertyRead]:
        offset = int(cursor) if cursor and cursor.isdigit() else 0
        listings = session.scalars(
            property_filter.apply(select(Property)).order_by(Property.created_at.desc()).offset(offset).limit(limit)
        ).all()
        return [PropertyRead.model_validate(listing) for listing in listings]

    def get_stats(self, session: Session, actor_user: ActorUser) -> PropertyStats:
        total = session.scalar(select(func.count(Property.id))) or 0
        by_status = dict(
            session.execute(select(Property.listing_status, func.count(Property.id)).group_by(Property.listing_status)).all()
        )
        by_type = dict(
            session.execute(select(Property.property_type, func.count(Property.id)).group_by(Property.property_type)).all()
        )
        average = session.scalar(select(func.avg(Property.price)).where(Property.listing_status == "ACTIVE"))
        return PropertyStats(
            total=int(total),
            by_status={key: int(value) for key, value in by_status.items()},
            by_type={key: int(value) for key, value in by_type.items()},
            average_active_price=round(float(average), 2) if average is not None else None,
        )

    def get_property(self, session: Session, actor_user: ActorUser, property_id: uuid.UUID) -> PropertyRead:
        return PropertyRead.model_validate(self._load(session, property_id))

    def list_interests(self, session: Session, actor_user: ActorUser, property_id: uuid.UUID) -> list[PropertyInterestRead]:
        listing = self._load(session, property_id)
        stmt = select(PropertyInterest).where(PropertyInterest.property_id == listing.id)
        visible = visible_campaign_ids(session, actor_user)
        if visible is not None:
            stmt = stmt.join(Lead, Lead.id == PropertyInterest.lead_id).where(Lead.campaign_id.in_(visible))
        interests = session.scalars(stmt.order_by(PropertyInterest.created_at.desc())).all()
        return [PropertyInterestRead.model_validate(interest) for interest in interests]

    def create_property(self, session: Session, actor_user: ActorUser, dto: PropertyCreate) -> PropertyRead:
        self._ensure_unique_mls(session, dto.mls_number)
        values = dto.model_dump()
        if values.get("listed_by_id") is None:
            values["listed_by_id"] = actor_user.user_id
        listing = Property(**values)
        session.add(listing)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=listing.id,
            action="create",
            before=None,
            after={"address": listing.address, "price": listing.price, "listing_status": listing.listing_status},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return PropertyRead.model_validate(listing)

    def update_property(
        self,
        session: Session,
        actor_user: ActorUser,
        property_id: uuid.UUID,
        dto: PropertyUpdate,
    ) -> PropertyRead:
        listing = self._load(session, property_id)
        before = PropertyRead.model_validate(listing).model_dump(mode="json")
        changes = dto.model_dump(exclude_unset=True)
        if changes.get("mls_number") and changes["mls_number"] != listing.mls_number:
            self._ensure_unique_mls(session, changes["mls_number"])
        required = {"address", "city", "state", "zip_code", "property_type", "listing_status", "price", "features"}
        for field_name, value in changes.items():
            if value is None and field_name in required:
                continue
            setattr(listing, field_name, value)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=listing.id,
            action="update",
            before=before,
            after=PropertyRead.model_validate(listing).model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return PropertyRead.model_validate(listing)

    def delete_property(self, session: Session, actor_user: ActorUser, property_id: uuid.UUID) -> None:
        _require_role(actor_user, "ADMIN")
        listing = self._load(session, property_id)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=listing.id,
            action="delete",
            before={"address": listing.address, "mls_number": listing.mls_number},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(listing)
        session.commit()

    def match_for_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> list[PropertyRead]:
        lead = get_visible_lead(session, actor_user, lead_id)
        stmt = select(Property).where(Property.listing_status == "ACTIVE")
        if lead.property_type_preference:
            stmt = stmt.where(Property.property_type.in_(lead.property_type_preference))
        if lead.budget_min is not None:
            stmt = stmt.where(Property.price >= lead.budget_min)
        if lead.budget_max is not None:
            stmt = stmt.where(Property.price <= lead.budget_max)
        if lead.location_preference:
            stmt = stmt.where(
                or_(
                    *[
                        or_(Property.city.ilike(f"%{location}%"), Property.zip_code == location)
                        for location in lead.location_preference
                    ]
                )
            )
        if lead.bedrooms_min is not None:
            stmt = stmt.where(Property.bedrooms >= lead.bedrooms_min)
        if lead.bathrooms_min is not None:
            stmt = stmt.where(Property.bathrooms >= lead.bathrooms_min)
        if lead.square_feet_min is not None:
            stmt = stmt.where(Property.square_feet >= lead.square_feet_min)
        listings = session.scalars(stmt.order_by(Property.price.asc()).limit(MATCH_LIMIT)).all()
        return [PropertyRead.model_validate(listing) for listing in listings]

    def _ensure_unique_mls(self, session: Session, mls_number: str | None) -> None:
        if not mls_number:
            return
        existing = session.scalar(select(Property.id).where(Property.mls_number == mls_number))
        if existing is not None:
            raise ConflictError("A property with this MLS number already exists", details={"mls_number": mls_number})

    def _load(self, session: Session, property_id: uuid.UUID) -> Property:
        listing = session.get(Property, property_id)
        if listing is None:
            raise NotFoundError("Property not found", details={"property_id": str(property_id)})
        return listing


pipeline_service = PipelineService()
campaign_service = CampaignService()
lead_service = LeadService()
task_service = TaskService()
interaction_service = InteractionService()
property_service = PropertyService()
