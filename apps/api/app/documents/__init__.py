from app.documents.api import documents_router, folders_router
from app.documents.models import Document, DocumentShare, Folder, FolderShare
from app.documents.service import DocumentService, FolderService, document_service, folder_service

__all__ = [
    "documents_router",
    "folders_router",
    "Document",
    "DocumentShare",
    "Folder",
    "FolderShare",
    "DocumentService",
    "FolderService",
    "document_service",
    "folder_service",
]
