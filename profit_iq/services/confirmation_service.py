"""Human review outcomes: confirm (replace line items) and reject (clear them)."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.errors import PersistenceError, ValidationError
from profit_iq.models.project import LineItem, ProjectDocument
from profit_iq.schemas.document import ConfirmDocumentRequest, DocumentStatus, DocumentType
from profit_iq.services.document_status import DocumentEvent, next_status

logger = logging.getLogger(__name__)


def _decimal(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _delete_line_items(db: Session, document: ProjectDocument) -> int:
    removed = (
        db.query(LineItem)
        .filter(LineItem.document_id == document.id)
        .delete(synchronize_session=False)
    )
    db.expire(document, ["line_items"])
    return removed


def confirm_document(db: Session, document: ProjectDocument, payload: ConfirmDocumentRequest) -> ProjectDocument:
    """Replace the document's line items with the reviewed set and mark it ``confirmed``.

    Only ``extracted`` documents can be confirmed and at least one line item
    is required. Delete, insert and the status update share one commit.
    """
    if document.status != DocumentStatus.EXTRACTED.value:
        raise ValidationError("Document must be in extracted status")
    if not payload.line_items:
        raise ValidationError("At least one line item is required")
    new_status = next_status(document.status, DocumentEvent.CONFIRMED)

    try:
        removed = _delete_line_items(db, document)
        db.add_all(
            [
                LineItem(
                    document_id=document.id,
                    project_id=document.project_id,
                    description=item.description,
                    quantity=_decimal(item.quantity),
                    unit=item.unit,
                    unit_price=_decimal(item.unit_price),
                    total=_decimal(item.total),
                    category=item.category.value,
                    sort_order=item.sort_order if item.sort_order is not None else index,
                )
                for index, item in enumerate(payload.line_items)
            ]
        )
        document.status = new_status.value
        document.vendor_name = payload.vendor_name
        document.document_number = payload.document_number
        document.document_date = payload.document_date
        document.due_date = payload.due_date
        document.total_amount = _decimal(payload.total_amount)
        if payload.document_type is not None and document.document_type != DocumentType.EMAIL.value:
            document.document_type = payload.document_type
        document.confirmed_at = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to confirm document %s", document.id)
        raise PersistenceError("Failed to confirm document") from exc

    db.refresh(document)
    logger.info(
        "Document %s confirmed with %d line items (replaced %d)",
        document.id,
        len(payload.line_items),
        removed,
    )
    return document


def reject_document(db: Session, document: ProjectDocument) -> ProjectDocument:
    """Clear line items and extraction data and mark the document ``rejected``."""
    new_status = next_status(document.status, DocumentEvent.REJECTED)

    try:
        removed = _delete_line_items(db, document)
        document.status = new_status.value
        document.raw_extraction = None
        document.vendor_name = None
        document.document_number = None
        document.document_date = None
        document.due_date = None
        document.total_amount = None
        document.confirmed_at = None
        if document.document_type != DocumentType.EMAIL.value:
            document.document_type = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to reject document %s", document.id)
        raise PersistenceError("Failed to reject document") from exc

    db.refresh(document)
    logger.info("Document %s rejected (cleared %d line items)", document.id, removed)
    return document
