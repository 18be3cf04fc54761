from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

MeetingStatus = Literal["SCHEDULED", "COMPLETED", "CANCELLED", "NO_SHOW"]
AttendeeStatus = Literal["PENDING", "ACCEPTED", "DECLINED"]


class MeetingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=500)
    meeting_url: str | None = Field(default=None, max_length=2000)
    start_time: datetime
    end_time: datetime
    lead_id: uuid.UUID | None = None
    attendee_ids: list[uuid.UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_window(self) -> "MeetingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class MeetingUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=500)
    meeting_url: str | None = Field(default=None, max_length=2000)
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: MeetingStatus | None = None


class MeetingInvite(BaseModel):
    user_ids: list[uuid.UUID] = Field(min_length=1)


class MeetingResponse(BaseModel):
    status: Literal["ACCEPTED", "DECLINED"]


class MeetingAttendeeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    status: AttendeeStatus
    responded_at: datetime | None


class MeetingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str | None
    location: str | None
    meeting_url: str | None
    start_time: datetime
    end_time: datetime
    status: MeetingStatus
    organizer_id: uuid.UUID
    lead_id: uuid.UUID | None
    attendees: list[MeetingAttendeeRead]
    created_at: datetime
    updated_at: datetime
