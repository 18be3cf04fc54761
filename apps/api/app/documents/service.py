from __future__ import annotations

import logging
import uuid
from pathlib import Path

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app import audit, files_stub
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from app.documents.models import Document, DocumentShare, Folder, FolderShare
from app.documents.schemas import (
    DocumentMetadata,
    DocumentRead,
    DocumentUpdate,
    FolderCreate,
    FolderDeleteResult,
    FolderRead,
    FolderUpdate,
)
from app.users.service import user_service

logger = logging.getLogger("app.documents")

MAX_FOLDER_DEPTH = 3


def _require_admin(actor_user: ActorUser, message: str) -> None:
    if not actor_user.is_admin:
        raise AccessDeniedError(message)


def _ensure_users_exist(session: Session, user_ids: list[uuid.UUID]) -> None:
    missing = user_service.missing_user_ids(session, user_ids)
    if missing:
        raise ValidationError(
            "One or more users not found",
            details={"missing_user_ids": sorted(str(user_id) for user_id in missing)},
        )


class FolderService:
    entity_type = "documents.folder"

    def list_folders(self, session: Session, actor_user: ActorUser) -> list[FolderRead]:
        stmt = select(Folder).options(selectinload(Folder.shares))
        if actor_user.is_admin:
            stmt = stmt.order_by(Folder.type.asc(), Folder.name.asc())
        else:
            stmt = (
                stmt.join(FolderShare, FolderShare.folder_id == Folder.id)
                .where(Folder.type == "SHARED", FolderShare.user_id == actor_user.user_id)
                .order_by(Folder.name.asc())
            )
        return [FolderRead.model_validate(folder) for folder in session.scalars(stmt).unique()]

    def get_folder(self, session: Session, actor_user: ActorUser, folder_id: uuid.UUID) -> FolderRead:
        folder = self._load(session, folder_id)
        if not self.can_view(actor_user, folder):
            raise AccessDeniedError("Access denied", details={"folder_id": str(folder_id)})
        return FolderRead.model_validate(folder)

    def create_folder(self, session: Session, actor_user: ActorUser, dto: FolderCreate) -> FolderRead:
        _require_admin(actor_user, "Only admins can create folders")
        if dto.parent_id is not None:
            if session.get(Folder, dto.parent_id) is None:
                raise NotFoundError("Parent folder not found", details={"parent_id": str(dto.parent_id)})
            if self._depth(session, dto.parent_id) >= MAX_FOLDER_DEPTH:
                raise ValidationError(
                    f"Maximum folder nesting depth ({MAX_FOLDER_DEPTH} levels) exceeded",
                    details={"parent_id": str(dto.parent_id)},
                )
        shared_with = list(dict.fromkeys(dto.shared_with_ids))
        _ensure_users_exist(session, shared_with)

        folder = Folder(
            name=dto.name.strip(),
            type=dto.type,
            parent_id=dto.parent_id,
            created_by_id=actor_user.user_id,
        )
        folder.shares = [FolderShare(user_id=user_id) for user_id in shared_with]
        session.add(folder)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=folder.id,
            action="create",
            before=None,
            after={"name": folder.name, "type": folder.type, "parent_id": str(folder.parent_id) if folder.parent_id else None},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return FolderRead.model_validate(folder)

    def update_folder(
        self,
        session: Session,
        actor_user: ActorUser,
        folder_id: uuid.UUID,
        dto: FolderUpdate,
    ) -> FolderRead:
        _require_admin(actor_user, "Only admins can update folders")
        folder = self._load(session, folder_id)
        before = FolderRead.model_validate(folder).model_dump(mode="json")
        if dto.name is not None:
            folder.name = dto.name.strip()
        if dto.type is not None:
            folder.type = dto.type
        if dto.shared_with_ids is not None:
            wanted = list(dict.fromkeys(dto.shared_with_ids))
            _ensure_users_exist(session, wanted)
            folder.shares = [share for share in folder.shares if share.user_id in set(wanted)]
            current = {share.user_id for share in folder.shares}
            folder.shares.extend(FolderShare(user_id=user_id) for user_id in wanted if user_id not in current)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=folder.id,
            action="update",
            before=before,
            after=FolderRead.model_validate(folder).model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return FolderRead.model_validate(folder)

    def delete_folder(self, session: Session, actor_user: ActorUser, folder_id: uuid.UUID) -> FolderDeleteResult:
        _require_admin(actor_user, "Only admins can delete folders")
        folder = self._load(session, folder_id)
        children = session.scalar(select(func.count(Folder.id)).where(Folder.parent_id == folder.id)) or 0
        if children > 0:
            raise ConflictError(
                "Cannot delete folder with subfolders. Delete children first.",
                details={"subfolder_count": int(children)},
            )

        documents = list(folder.documents)
        file_ids = [document.file_id for document in documents]
        for document in documents:
            session.delete(document)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=folder.id,
            action="delete",
            before={"name": folder.name, "document_count": len(documents)},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(folder)
        session.commit()
        # Blobs go only after the rows are gone.
        for file_id in file_ids:
            files_stub.delete_bytes(file_id)
        logger.info("folder.deleted", extra={"folder_id": str(folder_id), "deleted_documents": len(documents)})
        return FolderDeleteResult(folder_id=folder_id, deleted_documents=len(documents))

    def can_view(self, actor_user: ActorUser, folder: Folder) -> bool:
        if actor_user.is_admin:
            return True
        return folder.type == "SHARED" and actor_user.user_id in folder.shared_with_ids

    def _depth(self, session: Session, folder_id: uuid.UUID | None) -> int:
        depth = 0
        current = folder_id
        while current is not None and depth <= MAX_FOLDER_DEPTH:
            parent_id = session.scalar(select(Folder.parent_id).where(Folder.id == current))
            depth += 1
            current = parent_id
        return depth

    def _load(self, session: Session, folder_id: uuid.UUID) -> Folder:
        folder = session.scalar(select(Folder).where(Folder.id == folder_id).options(selectinload(Folder.shares)))
        if folder is None:
            raise NotFoundError("Folder not found", details={"folder_id": str(folder_id)})
        return folder


class DocumentService:
    entity_type = "documents.document"

    def __init__(self, folder_service: FolderService) -> None:
        self.folder_service = folder_service

    def list_documents(
        self,
        session: Session,
        actor_user: ActorUser,
        folder_id: uuid.UUID | None = None,
    ) -> list[DocumentRead]:
        stmt = select(Document).options(selectinload(Document.shares))
        if folder_id is not None:
            stmt = stmt.where(Document.folder_id == folder_id)
        if not actor_user.is_admin:
            shared_directly = select(DocumentShare.document_id).where(DocumentShare.user_id == actor_user.user_id)
            shared_folders = (
                select(Folder.id)
                .join(FolderShare, FolderShare.folder_id == Folder.id)
                .where(Folder.type == "SHARED", FolderShare.user_id == actor_user.user_id)
            )
            stmt = stmt.where(
                Document.type == "SHARED",
                or_(Document.id.in_(shared_directly), Document.folder_id.in_(shared_folders)),
            )
        documents = session.scalars(stmt.order_by(Document.created_at.desc())).all()
        return [DocumentRead.model_validate(document) for document in documents]

    def get_document(self, session: Session, actor_user: ActorUser, document_id: uuid.UUID) -> DocumentRead:
        return DocumentRead.model_validate(self._get_visible(session, actor_user, document_id))

    def download(self, session: Session, actor_user: ActorUser, document_id: uuid.UUID) -> tuple[Document, bytes]:
        document = self._get_visible(session, actor_user, document_id)
        try:
            content = files_stub.get_bytes(document.file_id)
        except FileNotFoundError as exc:
            raise NotFoundError("Document content not found", details={"document_id": str(document_id)}) from exc
        return document, content

    def upload(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        filename: str,
        content_type: str,
        content: bytes,
        metadata: DocumentMetadata,
        name: str | None = None,
    ) -> DocumentRead:
        _require_admin(actor_user, "Only admins can upload documents")
        settings = get_settings()
        if content_type not in settings.document_allowed_types:
            raise ValidationError(
                "File type not allowed",
                details={"content_type": content_type, "allowed": settings.document_allowed_types},
            )
        if len(content) == 0:
            raise ValidationError("File is empty", details={"file": "empty"})
        if len(content) > settings.document_max_bytes:
            raise ValidationError(
                "File exceeds the maximum allowed size",
                details={"max_bytes": settings.document_max_bytes},
            )
        if metadata.folder_id is not None and session.get(Folder, metadata.folder_id) is None:
            raise NotFoundError("Folder not found", details={"folder_id": str(metadata.folder_id)})
        shared_with = list(dict.fromkeys(metadata.shared_with_ids))
        _ensure_users_exist(session, shared_with)

        file_id = files_stub.store_bytes(content, filename, content_type)
        document = Document(
            name=(name or Path(filename).name or "document").strip(),
            file_id=file_id,
            file_type=content_type,
            file_size=len(content),
            type=metadata.type,
            folder_id=metadata.folder_id,
            uploaded_by_id=actor_user.user_id,
        )
        document.shares = [DocumentShare(user_id=user_id) for user_id in shared_with]
        session.add(document)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=document.id,
            action="upload",
            before=None,
            after={"name": document.name, "file_type": document.file_type, "file_size": document.file_size},
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return DocumentRead.model_validate(document)

    def update_document(
        self,
        session: Session,
        actor_user: ActorUser,
        document_id: uuid.UUID,
        dto: DocumentUpdate,
    ) -> DocumentRead:
        _require_admin(actor_user, "Only admins can update documents")
        document = self._load(session, document_id)
        before = DocumentRead.model_validate(document).model_dump(mode="json")
        if dto.name is not None:
            document.name = dto.name.strip()
        if dto.type is not None:
            document.type = dto.type
        if dto.shared_with_ids is not None:
            wanted = list(dict.fromkeys(dto.shared_with_ids))
            _ensure_users_exist(session, wanted)
            document.shares = [share for share in document.shares if share.user_id in set(wanted)]
            current = {share.user_id for share in document.shares}
            document.shares.extend(DocumentShare(user_id=user_id) for user_id in wanted if user_id not in current)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=document.id,
            action="update",
            before=before,
            after=DocumentRead.model_validate(document).model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return DocumentRead.model_validate(document)

    def delete_document(self, session: Session, actor_user: ActorUser, document_id: uuid.UUID) -> None:
        _require_admin(actor_user, "Only admins can delete documents")
        document = self._load(session, document_id)
        file_id = document.file_id
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=document.id,
            action="delete",
            before={"name": document.name, "file_id": str(file_id)},
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        session.delete(document)
        session.commit()
        files_stub.delete_bytes(file_id)

    def _get_visible(self, session: Session, actor_user: ActorUser, document_id: uuid.UUID) -> Document:
        document = self._load(session, document_id)
        if actor_user.is_admin:
            return document
        if document.type == "SHARED":
            if actor_user.user_id in document.shared_with_ids:
                return document
            if document.folder is not None and self.folder_service.can_view(actor_user, document.folder):
                return document
        raise AccessDeniedError("Access denied", details={"document_id": str(document_id)})

    def _load(self, session: Session, document_id: uuid.UUID) -> Document:
        document = session.scalar(
            select(Document).where(Document.id == document_id).options(selectinload(Document.shares))
        )
        if document is None:
            raise NotFoundError("Document not found", details={"document_id": str(document_id)})
        return document


folder_service = FolderService()
document_service = DocumentService(folder_service)
