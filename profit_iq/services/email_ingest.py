import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.errors import PersistenceError, ValidationError
from profit_iq.core.storage import BlobStorage, build_attachment_path, build_email_path
from profit_iq.models.project import Project, ProjectDocument
from profit_iq.schemas.document import DocumentStatus, DocumentType
from profit_iq.services.email_parsing import ParsedEmail, extract_financial_context, is_financial_attachment

logger = logging.getLogger(__name__)

EML_MIME_TYPE = "message/rfc822"


@dataclass
class IngestOutcome:
    email_document: ProjectDocument
    attachments: list[dict[str, Any]]


def _check_attachment_parent(parent: ProjectDocument) -> None:
    # Emails own attachments one level deep; attachments never own documents.
    if parent.parent_document_id is not None or parent.document_type != DocumentType.EMAIL.value:
        raise ValidationError("Attachments can only belong to a top-level email document")


def ingest_email(db: Session, *, project: Project, email: ParsedEmail, storage: BlobStorage) -> IngestOutcome:
    """Store an inbound email and its attachments as documents of *project*.

    The email body becomes a top-level ``email`` document; each attachment
    becomes a ``pending`` child document ready for extraction.
    """
    stored_urls: list[str] = []
    try:
        eml = email.as_eml().encode("utf-8")
        email_url = storage.store(build_email_path(str(project.id)), eml, EML_MIME_TYPE)
        stored_urls.append(email_url)

        email_doc = ProjectDocument(
            project_id=project.id,
            owner_id=project.owner_id,
            file_name=email.subject or "email.eml",
            file_path=email_url,
            file_size=len(eml),
            mime_type=EML_MIME_TYPE,
            document_type=DocumentType.EMAIL.value,
            status=DocumentStatus.PENDING.value,
            email_from=email.from_address,
            email_to=email.to_address,
            email_subject=email.subject,
            email_body=email.body,
            email_received_at=email.received_at,
        )
        db.add(email_doc)
        db.flush()
        _check_attachment_parent(email_doc)

        summaries = []
        for attachment in email.attachments:
            url = storage.store(
                build_attachment_path(str(project.id), attachment.filename),
                attachment.content,
                attachment.content_type,
            )
            stored_urls.append(url)
            child = ProjectDocument(
                project_id=project.id,
                owner_id=project.owner_id,
                file_name=attachment.filename,
                file_path=url,
                file_size=attachment.size,
                mime_type=attachment.content_type,
                status=DocumentStatus.PENDING.value,
                parent_document_id=email_doc.id,
            )
            db.add(child)
            db.flush()
            summaries.append(
                {
                    "id": str(child.id),
                    "filename": attachment.filename,
                    "is_financial": is_financial_attachment(attachment.filename, attachment.content_type),
                    "size": attachment.size,
                }
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to save inbound email for project %s", project.id)
        _discard(storage, stored_urls)
        raise PersistenceError("Failed to process email") from exc
    except PersistenceError:
        db.rollback()
        _discard(storage, stored_urls)
        raise

    db.refresh(email_doc)
    logger.info(
        "Ingested email %s for project %s with %d attachment(s)",
        email_doc.id,
        project.id,
        len(summaries),
    )
    return IngestOutcome(email_document=email_doc, attachments=summaries)


def _discard(storage: BlobStorage, urls: list[str]) -> None:
    for url in urls:
        storage.delete(url)


def list_email_documents(db: Session, project_id) -> list[ProjectDocument]:
    return (
        db.query(ProjectDocument)
        .filter(
            ProjectDocument.project_id == project_id,
            ProjectDocument.document_type == DocumentType.EMAIL.value,
            ProjectDocument.parent_document_id.is_(None),
        )
        .order_by(ProjectDocument.email_received_at.desc())
        .all()
    )


def email_context(document: ProjectDocument) -> dict[str, list]:
    return extract_financial_context(document.email_body or "")
