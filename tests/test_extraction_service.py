"""Extraction orchestration: status flips, failure handling and telemetry rows."""

import asyncio
import json
import os
import unittest
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from profit_iq.core.config import get_settings
from profit_iq.core.errors import FetchFailure, InvalidTransition, ModelFailure, ParseFailure, PersistenceError
from profit_iq.models.project import Base, ProjectDocument, PromptExecution
from profit_iq.schemas.project import ProjectCreate
from profit_iq.services.ai.common.providers import ProviderResult
from profit_iq.services.ai.common.providers.mock import MOCK_EXTRACTION
from profit_iq.services.ai.common.telemetry import record_prompt_execution
from profit_iq.services.ai.document_extract.service import ExtractionRun, parse_extraction
from profit_iq.services import extraction_service
from profit_iq.services.extraction_service import extract_document
from profit_iq.services.project_service import create_project
from profit_iq.utils.alerting import alert_tracker

OWNER_ID = str(uuid.uuid4())


class _DatabaseTestCase(unittest.TestCase):
    def setUp(self):
        get_settings.cache_clear()
        alert_tracker.reset()
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.db = self.SessionLocal()
        self.project = create_project(self.db, owner_id=OWNER_ID, payload=ProjectCreate(name="Kitchen remodel"))
        self.storage = MagicMock()
        self.storage.fetch = AsyncMock(return_value=b"%PDF-1.4 invoice")

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()
        alert_tracker.reset()
        get_settings.cache_clear()

    def _document(self, status="pending", document_type=None):
        doc = ProjectDocument(
            project_id=self.project.id,
            owner_id=self.project.owner_id,
            file_name="invoice.pdf",
            file_path="https://storage.test/storage/v1/object/profit-iq/documents/invoice.pdf",
            file_size=16,
            mime_type="application/pdf",
            status=status,
            document_type=document_type,
        )
        self.db.add(doc)
        self.db.commit()
        self.db.refresh(doc)
        return doc

    def _telemetry(self):
        return self.db.query(PromptExecution).all()


class ExtractDocumentSuccessTests(_DatabaseTestCase):
    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock"}, clear=False)
    def test_pending_document_becomes_extracted(self):
        doc = self._document()

        result = asyncio.run(extract_document(self.db, doc, self.storage))

        self.assertEqual(result.vendor.name, "Mock Supply Co.")
        self.db.refresh(doc)
        self.assertEqual(doc.status, "extracted")
        self.assertEqual(doc.document_type, "invoice")
        self.assertEqual(doc.vendor_name, "Mock Supply Co.")
        self.assertEqual(doc.document_number, "MOCK-001")
        self.assertEqual(doc.document_date.isoformat(), "2026-01-15")
        self.assertEqual(float(doc.total_amount), 250.0)
        self.assertEqual(doc.raw_extraction["line_items"][0]["description"], "Framing lumber")
        # Line items only appear on confirmation.
        self.assertEqual(doc.line_items, [])
        self.storage.fetch.assert_awaited_once_with(doc.file_path)

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock"}, clear=False)
    def test_success_writes_telemetry(self):
        doc = self._document()
        asyncio.run(extract_document(self.db, doc, self.storage))

        rows = self._telemetry()
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row.prompt_id, "extraction-v1")
        self.assertEqual(row.document_id, doc.id)
        self.assertEqual(row.project_id, self.project.id)
        self.assertEqual(row.execution_meta["provider"], "mock")
        self.assertEqual(row.execution_meta["confidence"], 0.9)
        self.assertEqual(row.execution_meta["line_item_count"], 1)
        self.assertIn("response_hash", row.execution_meta)
        self.assertEqual(row.parsed_response["document_type"], "invoice")

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock", "AI_DEBUG_STORE_RAW": "false"}, clear=False)
    def test_raw_response_not_stored_when_disabled(self):
        doc = self._document()
        asyncio.run(extract_document(self.db, doc, self.storage))
        row = self._telemetry()[0]
        self.assertIsNone(row.raw_response)
        self.assertIn("response_hash", row.execution_meta)

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock"}, clear=False)
    def test_email_document_keeps_email_type(self):
        doc = self._document(document_type="email")
        asyncio.run(extract_document(self.db, doc, self.storage))
        self.db.refresh(doc)
        self.assertEqual(doc.status, "extracted")
        self.assertEqual(doc.document_type, "email")

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock"}, clear=False)
    def test_failed_document_can_be_reextracted(self):
        doc = self._document(status="failed")
        asyncio.run(extract_document(self.db, doc, self.storage))
        self.db.refresh(doc)
        self.assertEqual(doc.status, "extracted")

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "mock"}, clear=False)
    def test_telemetry_failure_does_not_break_extraction(self):
        doc = self._document()
        with patch(
            "profit_iq.services.ai.common.telemetry.PromptExecution",
            side_effect=SQLAlchemyError("telemetry table missing"),
        ):
            result = asyncio.run(extract_document(self.db, doc, self.storage))

        self.assertEqual(result.document_type, "invoice")
        self.db.refresh(doc)
        self.assertEqual(doc.status, "extracted")
        self.assertEqual(self._telemetry(), [])
        self.assertEqual(alert_tracker.count("TELEMETRY_WRITE_FAILED"), 1)

    def test_processing_status_committed_before_model_call(self):
        doc = self._document()
        seen = {}
        other = self.SessionLocal()

        async def fake_run(*args, **kwargs):
            seen["status"] = other.get(ProjectDocument, doc.id).status
            return ExtractionRun(
                result=parse_extraction(json.dumps(MOCK_EXTRACTION)),
                provider_result=ProviderResult(raw_text="{}", model="mock-v1", provider="mock"),
                latency_ms=3,
            )

        with patch("profit_iq.services.extraction_service.run_extraction", side_effect=fake_run):
            asyncio.run(extract_document(self.db, doc, self.storage))
        other.close()
        self.assertEqual(seen["status"], "processing")


class ExtractDocumentFailureTests(_DatabaseTestCase):
    def test_fetch_failure_marks_failed(self):
        doc = self._document()
        self.storage.fetch = AsyncMock(side_effect=FetchFailure("Failed to fetch document content"))

        with self.assertRaises(FetchFailure):
            asyncio.run(extract_document(self.db, doc, self.storage))

        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")
        self.assertIsNone(doc.raw_extraction)
        rows = self._telemetry()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].execution_meta["error"], "fetch_failed")
        self.assertEqual(alert_tracker.count("EXTRACTION_FAILED"), 1)

    def test_parse_failure_marks_failed_and_keeps_raw_text(self):
        doc = self._document()
        failure = ParseFailure(
            "Model output is not valid JSON",
            raw_text="not json at all",
            provider_result=ProviderResult(raw_text="not json at all", model="mock-v1", provider="mock"),
        )
        with patch("profit_iq.services.extraction_service.run_extraction", AsyncMock(side_effect=failure)):
            with self.assertRaises(ParseFailure):
                asyncio.run(extract_document(self.db, doc, self.storage))

        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")
        row = self._telemetry()[0]
        self.assertEqual(row.raw_response, "not json at all")
        self.assertEqual(row.execution_meta["error"], "parse_failed")
        self.assertEqual(row.execution_meta["provider"], "mock")

    def test_model_failure_marks_failed(self):
        doc = self._document()
        with patch(
            "profit_iq.services.extraction_service.run_extraction",
            AsyncMock(side_effect=ModelFailure("Model call timed out")),
        ):
            with self.assertRaises(ModelFailure):
                asyncio.run(extract_document(self.db, doc, self.storage))
        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "claude", "ANTHROPIC_API_KEY": ""}, clear=False)
    def test_provider_without_api_key_marks_failed(self):
        doc = self._document()

        with self.assertRaises(ModelFailure) as ctx:
            asyncio.run(extract_document(self.db, doc, self.storage))

        self.assertIn("ANTHROPIC_API_KEY", ctx.exception.message)
        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")
        self.assertIsNone(doc.raw_extraction)
        self.assertIsNone(doc.vendor_name)
        row = self._telemetry()[0]
        self.assertEqual(row.execution_meta["error"], "model_failed")
        self.assertEqual(alert_tracker.count("EXTRACTION_FAILED"), 1)

    @patch.dict(os.environ, {"AI_EXTRACT_PROVIDER": "openai", "AI_ALLOWED_PROVIDERS": "claude"}, clear=False)
    def test_provider_outside_allowlist_marks_failed(self):
        doc = self._document()
        with self.assertRaises(ModelFailure):
            asyncio.run(extract_document(self.db, doc, self.storage))
        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")

    def test_failed_status_write_still_records_telemetry(self):
        doc = self._document()
        self.storage.fetch = AsyncMock(side_effect=FetchFailure("Failed to fetch document content"))
        real_commit = extraction_service._commit

        def commit(db, document, what):
            if what == "failed status":
                db.rollback()
                raise PersistenceError("Failed to save extraction")
            real_commit(db, document, what)

        with patch("profit_iq.services.extraction_service._commit", side_effect=commit):
            with self.assertRaises(PersistenceError):
                asyncio.run(extract_document(self.db, doc, self.storage))

        rows = self._telemetry()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].document_id, doc.id)
        self.assertEqual(rows[0].execution_meta["error"], "fetch_failed")
        self.assertEqual(alert_tracker.count("EXTRACTION_FAILED"), 1)

    def test_failed_extraction_keeps_previous_extraction(self):
        doc = self._document(status="extracted")
        doc.raw_extraction = {"document_type": "quote"}
        doc.vendor_name = "Old Vendor"
        self.db.commit()
        self.storage.fetch = AsyncMock(side_effect=FetchFailure())

        with self.assertRaises(FetchFailure):
            asyncio.run(extract_document(self.db, doc, self.storage))

        self.db.refresh(doc)
        self.assertEqual(doc.status, "failed")
        self.assertEqual(doc.vendor_name, "Old Vendor")

    def test_unknown_status_rejected_before_any_work(self):
        doc = self._document()
        doc.status = "archived"
        with self.assertRaises(InvalidTransition):
            asyncio.run(extract_document(self.db, doc, self.storage))
        self.storage.fetch.assert_not_awaited()


class RecordPromptExecutionTests(_DatabaseTestCase):
    def test_returns_false_and_rolls_back_on_error(self):
        with patch.object(self.db, "commit", side_effect=SQLAlchemyError("disk full")):
            ok = record_prompt_execution(self.db, prompt_id="extraction-v1", metadata={"k": "v"})
        self.assertFalse(ok)
        self.assertEqual(self._telemetry(), [])

    def test_stores_provider_details(self):
        result = ProviderResult(raw_text="{}", model="claude-sonnet-4-5", provider="claude", prompt_tokens=11, completion_tokens=7)
        ok = record_prompt_execution(self.db, prompt_id="extraction-v1", provider_result=result, latency_ms=42)
        self.assertTrue(ok)
        row = self._telemetry()[0]
        self.assertEqual(row.input_tokens, 11)
        self.assertEqual(row.output_tokens, 7)
        self.assertEqual(row.latency_ms, 42)
        self.assertEqual(row.raw_response, "{}")
        self.assertEqual(row.execution_meta["model"], "claude-sonnet-4-5")
