from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Select, or_

from app.crm.models import Interaction, Lead, Property, Task

OPEN_LISTING_STATUSES = ("ACTIVE", "PENDING", "COMING_SOON")


def _like(value: str) -> str:
    return f"%{value.strip()}%"


@dataclass
class LeadFilter:
    campaign_id: uuid.UUID | None = None
    stage_id: uuid.UUID | None = None
    lead_type: str | None = None
    priority: str | None = None
    assigned_to_id: uuid.UUID | None = None
    is_archived: bool | None = None
    search: str | None = None
    # None means unrestricted; an empty list matches nothing.
    visible_campaign_ids: list[uuid.UUID] | None = None

    def apply(self, stmt: Select) -> Select:
        if self.visible_campaign_ids is not None:
            stmt = stmt.where(Lead.campaign_id.in_(self.visible_campaign_ids))
        if self.campaign_id is not None:
            stmt = stmt.where(Lead.campaign_id == self.campaign_id)
        if self.stage_id is not None:
            stmt = stmt.where(Lead.current_stage_id == self.stage_id)
        if self.lead_type:
            stmt = stmt.where(Lead.lead_type == self.lead_type)
        if self.priority:
            stmt = stmt.where(Lead.priority == self.priority)
        if self.assigned_to_id is not None:
            stmt = stmt.where(Lead.assigned_to_id == self.assigned_to_id)
        if self.is_archived is not None:
            stmt = stmt.where(Lead.is_archived.is_(self.is_archived))
        if self.search and self.search.strip():
            pattern = _like(self.search)
            stmt = stmt.where(
                or_(
                    Lead.first_name.ilike(pattern),
                    Lead.last_name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.mobile.ilike(pattern),
                )
            )
        return stmt


@dataclass
class PropertyFilter:
    property_type: str | None = None
    listing_statuses: list[str] = field(default_factory=lambda: list(OPEN_LISTING_STATUSES))
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    min_bedrooms: int | None = None
    max_bedrooms: int | None = None
    min_bathrooms: float | None = None
    min_square_feet: int | None = None
    max_square_feet: int | None = None
    search: str | None = None

    def apply(self, stmt: Select) -> Select:
        if self.property_type:
            stmt = stmt.where(Property.property_type == self.property_type)
        if self.listing_statuses:
            stmt = stmt.where(Property.listing_status.in_(self.listing_statuses))
        if self.city:
            stmt = stmt.where(Property.city.ilike(_like(self.city)))
        if self.state:
            stmt = stmt.where(Property.state.ilike(_like(self.state)))
        if self.zip_code:
            stmt = stmt.where(Property.zip_code == self.zip_code)
        if self.min_price is not None:
            stmt = stmt.where(Property.price >= self.min_price)
        if self.max_price is not None:
            stmt = stmt.where(Property.price <= self.max_price)
        if self.min_bedrooms is not None:
            stmt = stmt.where(Property.bedrooms >= self.min_bedrooms)
        if self.max_bedrooms is not None:
            stmt = stmt.where(Property.bedrooms <= self.max_bedrooms)
        if self.min_bathrooms is not None:
            stmt = stmt.where(Property.bathrooms >= self.min_bathrooms)
        if self.min_square_feet is not None:
            stmt = stmt.where(Property.square_feet >= self.min_square_feet)
        if self.max_square_feet is not None:
            stmt = stmt.where(Property.square_feet <= self.max_square_feet)
        if self.search and self.search.strip():
            pattern = _like(self.search)
            stmt = stmt.where(
                or_(
                    Property.address.ilike(pattern),
                    Property.city.ilike(pattern),
                    Property.mls_number.ilike(pattern),
                    Property.description.ilike(pattern),
                )
            )
        return stmt


@dataclass
class InteractionFilter:
    lead_id: uuid.UUID | None = None
    type: str | None = None
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None
    visible_campaign_ids: list[uuid.UUID] | None = None

    def apply(self, stmt: Select) -> Select:
        if self.visible_campaign_ids is not None:
            stmt = stmt.join(Lead, Lead.id == Interaction.lead_id).where(Lead.campaign_id.in_(self.visible_campaign_ids))
        if self.lead_id is not None:
            stmt = stmt.where(Interaction.lead_id == self.lead_id)
        if self.type:
            stmt = stmt.where(Interaction.type == self.type)
        if self.occurred_from is not None:
            stmt = stmt.where(Interaction.occurred_at >= self.occurred_from)
        if self.occurred_to is not None:
            stmt = stmt.where(Interaction.occurred_at <= self.occurred_to)
        return stmt


@dataclass
class TaskFilter:
    assigned_to_id: uuid.UUID | None = None
    is_completed: bool | None = None
    type: str | None = None
    lead_id: uuid.UUID | None = None

    def apply(self, stmt: Select) -> Select:
        if self.assigned_to_id is not None:
            stmt = stmt.where(Task.assigned_to_id == self.assigned_to_id)
        if self.is_completed is not None:
            stmt = stmt.where(Task.is_completed.is_(self.is_completed))
        if self.type:
            stmt = stmt.where(Task.type == self.type)
        if self.lead_id is not None:
            stmt = stmt.where(Task.lead_id == self.lead_id)
        return stmt
