"""Extraction orchestration for a single document.

``extract_document`` drives the document through
``processing -> extracted | failed``:

1. flip to ``processing`` and commit so concurrent readers see it;
2. fetch the stored bytes and run the extraction adapter;
3. commit either the extraction together with ``extracted`` or ``failed``;
4. write a telemetry row (best effort, never raises);
5. return the validated result, or re-raise the adapter failure.

Concurrent extract calls on one document are not serialized; the last
commit wins.
"""

import logging
import time
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.errors import AdapterFailure, ParseFailure, PersistenceError
from profit_iq.core.storage import BlobStorage
from profit_iq.models.project import ProjectDocument
from profit_iq.schemas.document import DocumentStatus, DocumentType
from profit_iq.services.ai.common.telemetry import record_prompt_execution
from profit_iq.services.ai.document_extract.contracts import ExtractionResult
from profit_iq.services.ai.document_extract.prompts import PROMPT_ID
from profit_iq.services.ai.document_extract.service import ExtractionRun, run_extraction
from profit_iq.services.document_status import DocumentEvent, next_status
from profit_iq.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)


def _commit(db: Session, document: ProjectDocument, what: str) -> None:
    document_id = document.id
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to persist %s for document %s", what, document_id)
        raise PersistenceError("Failed to save extraction") from exc


def _optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def apply_extraction(document: ProjectDocument, result: ExtractionResult) -> None:
    """Copy a validated extraction onto the document and mark it ``extracted``."""
    document.status = next_status(document.status, DocumentEvent.EXTRACT_SUCCEEDED).value
    document.raw_extraction = result.model_dump(mode="json")
    document.vendor_name = result.vendor.name
    document.document_number = result.document_info.number
    document.document_date = _optional_date(result.document_info.date)
    document.due_date = _optional_date(result.document_info.due_date)
    document.total_amount = Decimal(str(result.totals.total))
    # Email bodies stay classified as emails; only their summary fields change.
    if document.document_type != DocumentType.EMAIL.value:
        document.document_type = result.document_type


def _record_success(db: Session, document: ProjectDocument, run: ExtractionRun) -> None:
    record_prompt_execution(
        db,
        prompt_id=PROMPT_ID,
        project_id=document.project_id,
        document_id=document.id,
        provider_result=run.provider_result,
        latency_ms=run.latency_ms,
        parsed_response=run.result.model_dump(mode="json"),
        metadata={
            "confidence": run.result.confidence,
            "document_type": run.result.document_type,
            "line_item_count": len(run.result.line_items),
        },
    )


def _record_failure(db: Session, project_id, document_id, exc: AdapterFailure, latency_ms: int) -> None:
    provider_result = getattr(exc, "provider_result", None)
    raw_text = exc.raw_text if isinstance(exc, ParseFailure) else None
    record_prompt_execution(
        db,
        prompt_id=PROMPT_ID,
        project_id=project_id,
        document_id=document_id,
        provider_result=provider_result,
        latency_ms=latency_ms,
        raw_response=raw_text,
        metadata={"error": exc.error_kind, "message": exc.message},
    )


async def extract_document(
    db: Session,
    document: ProjectDocument,
    storage: BlobStorage,
    *,
    override_provider: Optional[str] = None,
    override_model: Optional[str] = None,
) -> ExtractionResult:
    """Run extraction for an already authorized *document*.

    Raises ``InvalidTransition`` when extraction cannot start from the
    current status, ``AdapterFailure`` when extraction fails (the document
    is left ``failed``), and ``PersistenceError`` when a status write fails.
    """
    project_id, document_id = document.project_id, document.id
    document.status = next_status(document.status, DocumentEvent.EXTRACT_STARTED).value
    _commit(db, document, "processing status")

    started = time.monotonic()
    try:
        content = await storage.fetch(document.file_path)
        run = await run_extraction(
            content,
            document.mime_type,
            file_name=document.file_name,
            override_provider=override_provider,
            override_model=override_model,
        )
    except AdapterFailure as exc:
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.warning("Extraction failed for document %s: %s (%s)", document.id, exc.message, exc.error_kind)
        document.status = next_status(document.status, DocumentEvent.EXTRACT_FAILED).value
        try:
            _commit(db, document, "failed status")
        finally:
            # Telemetry and the alert are attempted even when the status write fails.
            _record_failure(db, project_id, document_id, exc, latency_ms)
            alert_tracker.record("EXTRACTION_FAILED", {"document_id": str(document_id), "error": exc.error_kind})
        raise

    apply_extraction(document, run.result)
    try:
        _commit(db, document, "extraction result")
    except PersistenceError:
        # Leave the row in a terminal state rather than stuck in processing.
        document.status = DocumentStatus.FAILED.value
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to mark document %s as failed", document.id)
        raise

    _record_success(db, document, run)
    logger.info(
        "Document %s extracted (type=%s, items=%d, confidence=%.2f)",
        document.id,
        run.result.document_type,
        len(run.result.line_items),
        run.result.confidence,
    )
    return run.result
