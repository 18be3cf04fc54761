from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SharingType = Literal["SHARED", "PERSONAL"]


class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: SharingType = "SHARED"
    parent_id: uuid.UUID | None = None
    shared_with_ids: list[uuid.UUID] = Field(default_factory=list)


class FolderUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: SharingType | None = None
    shared_with_ids: list[uuid.UUID] | None = None


class FolderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: SharingType
    parent_id: uuid.UUID | None
    created_by_id: uuid.UUID
    shared_with_ids: list[uuid.UUID]
    created_at: datetime
    updated_at: datetime


class FolderDeleteResult(BaseModel):
    folder_id: uuid.UUID
    deleted_documents: int


class DocumentMetadata(BaseModel):
    type: SharingType = "SHARED"
    folder_id: uuid.UUID | None = None
    shared_with_ids: list[uuid.UUID] = Field(default_factory=list)


class DocumentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: SharingType | None = None
    shared_with_ids: list[uuid.UUID] | None = None


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    file_type: str
    file_size: int
    type: SharingType
    folder_id: uuid.UUID | None
    uploaded_by_id: uuid.UUID
    shared_with_ids: list[uuid.UUID]
    created_at: datetime
    updated_at: datetime
