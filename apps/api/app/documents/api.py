from __future__ import annotations

import json
import uuid

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from app.api.deps import domain_error_response, error_response, get_current_actor
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import DomainError
from app.documents.schemas import (
    DocumentMetadata,
    DocumentRead,
    DocumentUpdate,
    FolderCreate,
    FolderDeleteResult,
    FolderRead,
    FolderUpdate,
)
from app.documents.service import document_service, folder_service

folders_router = APIRouter(prefix="/api/folders", tags=["documents.folders"])
documents_router = APIRouter(prefix="/api/documents", tags=["documents"])


@folders_router.get("", response_model=list[FolderRead])
def list_folders(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[FolderRead]:
    return folder_service.list_folders(db, user)


@folders_router.get("/{folder_id}", response_model=FolderRead)
def get_folder(
    request: Request,
    folder_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> FolderRead | JSONResponse:
    try:
        return folder_service.get_folder(db, user, folder_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@folders_router.post("", response_model=FolderRead, status_code=status.HTTP_201_CREATED)
def create_folder(
    request: Request,
    dto: FolderCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> FolderRead | JSONResponse:
    try:
        return folder_service.create_folder(db, user, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@folders_router.put("/{folder_id}", response_model=FolderRead)
def update_folder(
    request: Request,
    folder_id: uuid.UUID,
    dto: FolderUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> FolderRead | JSONResponse:
    try:
        return folder_service.update_folder(db, user, folder_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@folders_router.delete("/{folder_id}", response_model=FolderDeleteResult)
def delete_folder(
    request: Request,
    folder_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> FolderDeleteResult | JSONResponse:
    try:
        return folder_service.delete_folder(db, user, folder_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@documents_router.get("", response_model=list[DocumentRead])
def list_documents(
    folder_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[DocumentRead]:
    return document_service.list_documents(db, user, folder_id=folder_id)


@documents_router.post("/upload", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def upload_document(
    request: Request,
    file: UploadFile = File(...),
    name: str | None = Form(default=None),
    metadata: str | None = Form(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> DocumentRead | JSONResponse:
    try:
        parsed = DocumentMetadata.model_validate(json.loads(metadata)) if metadata else DocumentMetadata()
    except (json.JSONDecodeError, SchemaValidationError) as exc:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="validation_error",
            message="Invalid document metadata",
            details=str(exc),
        )

    try:
        return document_service.upload(
            db,
            user,
            filename=file.filename or "document",
            content_type=file.content_type or "application/octet-stream",
            content=file.file.read(get_settings().document_max_bytes + 1),
            metadata=parsed,
            name=name,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@documents_router.get("/{document_id}", response_model=DocumentRead)
def get_document(
    request: Request,
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> DocumentRead | JSONResponse:
    try:
        return document_service.get_document(db, user, document_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@documents_router.get("/{document_id}/download")
def download_document(
    request: Request,
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        document, content = document_service.download(db, user, document_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(
        content=content,
        media_type=document.file_type,
        headers={"Content-Disposition": f'attachment; filename="{document.name}"'},
    )


@documents_router.put("/{document_id}", response_model=DocumentRead)
def update_document(
    request: Request,
    document_id: uuid.UUID,
    dto: DocumentUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> DocumentRead | JSONResponse:
    try:
        return document_service.update_document(db, user, document_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@documents_router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    request: Request,
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> Response:
    try:
        document_service.delete_document(db, user, document_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
