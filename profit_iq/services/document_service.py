import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.config import get_settings
from profit_iq.core.errors import NotFoundError, PersistenceError, ValidationError
from profit_iq.core.storage import BlobStorage, build_document_path
from profit_iq.models.project import LineItem, Project, ProjectDocument
from profit_iq.schemas.document import DocumentStatus, DocumentType
from profit_iq.services.project_service import ensure_owner, parse_id
from profit_iq.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


def line_item_to_out(item: LineItem) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "document_id": str(item.document_id),
        "project_id": str(item.project_id),
        "description": item.description,
        "quantity": _float(item.quantity),
        "unit": item.unit,
        "unit_price": _float(item.unit_price),
        "total": float(item.total),
        "category": item.category,
        "sort_order": item.sort_order,
    }


def document_to_out(document: ProjectDocument) -> dict[str, Any]:
    return {
        "id": str(document.id),
        "project_id": str(document.project_id),
        "file_name": document.file_name,
        "file_path": document.file_path,
        "file_size": document.file_size,
        "mime_type": document.mime_type,
        "document_type": document.document_type,
        "status": document.status,
        "raw_extraction": document.raw_extraction,
        "vendor_name": document.vendor_name,
        "document_number": document.document_number,
        "document_date": document.document_date,
        "due_date": document.due_date,
        "total_amount": _float(document.total_amount),
        "confirmed_at": document.confirmed_at,
        "parent_document_id": str(document.parent_document_id) if document.parent_document_id else None,
        "email_from": document.email_from,
        "email_to": document.email_to,
        "email_subject": document.email_subject,
        "email_received_at": document.email_received_at,
        "created_at": document.created_at,
        "updated_at": document.updated_at,
    }


def document_detail(document: ProjectDocument) -> dict[str, Any]:
    data = document_to_out(document)
    data["email_body"] = document.email_body
    data["line_items"] = [line_item_to_out(item) for item in document.line_items]
    return data


def get_owned_document(db: Session, document_id: Any, owner_id: str) -> ProjectDocument:
    """Load a document and check that its project belongs to *owner_id*.

    Missing documents raise ``NotFoundError``; documents of other owners
    raise ``AuthorizationError`` (reported to clients as 404 as well).
    """
    document = db.get(ProjectDocument, parse_id(document_id, "Document"))
    if document is None:
        raise NotFoundError("Document not found")
    ensure_owner(document.project, owner_id)
    return document


def list_documents(
    db: Session,
    project_id,
    *,
    status: Optional[DocumentStatus] = None,
    document_type: Optional[DocumentType] = None,
) -> list[ProjectDocument]:
    query = db.query(ProjectDocument).filter(ProjectDocument.project_id == project_id)
    if status is not None:
        query = query.filter(ProjectDocument.status == DocumentStatus(status).value)
    if document_type is not None:
        query = query.filter(ProjectDocument.document_type == DocumentType(document_type).value)
    return query.order_by(ProjectDocument.created_at.desc()).all()


def validate_upload(file_name: Optional[str], mime_type: Optional[str], size: int) -> None:
    if not file_name:
        raise ValidationError("No file provided")
    if (mime_type or "").lower() != PDF_MIME_TYPE:
        raise ValidationError("Only PDF files are allowed")
    max_bytes = get_settings().max_upload_bytes
    if size > max_bytes:
        raise ValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if size == 0:
        raise ValidationError("File is empty")


def create_uploaded_document(
    db: Session,
    *,
    project: Project,
    owner_id: str,
    file_name: str,
    content: bytes,
    mime_type: Optional[str],
    storage: BlobStorage,
) -> ProjectDocument:
    """Store an uploaded PDF and create its ``pending`` document row."""
    validate_upload(file_name, mime_type, len(content))

    url = storage.store(build_document_path(str(project.id), file_name), content, mime_type)
    document = ProjectDocument(
        project_id=project.id,
        owner_id=owner_id,
        file_name=file_name,
        file_path=url,
        file_size=len(content),
        mime_type=mime_type,
        status=DocumentStatus.PENDING.value,
    )
    try:
        db.add(document)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to save uploaded document for project %s", project.id)
        storage.delete(url)
        raise PersistenceError("Failed to upload document") from exc
    db.refresh(document)
    logger.info("Document %s uploaded to project %s", document.id, project.id)
    return document


def delete_document(db: Session, document: ProjectDocument, storage: BlobStorage) -> None:
    """Delete a document, its line items and any attachments.

    Blob removal is best effort; the database delete always proceeds.
    """
    urls = [document.file_path] + [child.file_path for child in document.attachments]
    document_id = document.id
    try:
        db.delete(document)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to delete document %s", document_id)
        raise PersistenceError("Failed to delete document") from exc

    for url in urls:
        if not storage.delete(url):
            alert_tracker.record("BLOB_DELETE_FAILED", {"document_id": str(document_id)})
    logger.info("Document %s deleted", document_id)
