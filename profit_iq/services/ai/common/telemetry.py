"""AI telemetry — best-effort ``prompt_executions`` rows for every extraction attempt."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from sqlalchemy.orm import Session

from profit_iq.core.config import get_settings
from profit_iq.models.project import PromptExecution
from profit_iq.utils.alerting import alert_tracker

from .providers.base import ProviderResult

logger = logging.getLogger(__name__)


def record_prompt_execution(
    db: Session,
    *,
    prompt_id: str,
    project_id=None,
    document_id=None,
    provider_result: ProviderResult | None = None,
    latency_ms: int | None = None,
    raw_response: str | None = None,
    parsed_response: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Write one ``PromptExecution`` row in its own commit.

    Never raises: a failed write is rolled back, logged and counted, and the
    caller carries on. Returns whether the row was stored.
    """
    settings = get_settings()
    meta: dict[str, Any] = dict(metadata or {})
    if provider_result is not None:
        meta.setdefault("provider", provider_result.provider)
        meta.setdefault("model", provider_result.model)
        if raw_response is None:
            raw_response = provider_result.raw_text
    if raw_response is not None:
        meta["response_hash"] = hashlib.sha256(raw_response.encode()).hexdigest()
        if not settings.ai_debug_store_raw:
            raw_response = None

    try:
        db.add(
            PromptExecution(
                prompt_id=prompt_id,
                project_id=project_id,
                document_id=document_id,
                input_tokens=provider_result.prompt_tokens if provider_result else None,
                output_tokens=provider_result.completion_tokens if provider_result else None,
                latency_ms=latency_ms,
                raw_response=raw_response,
                parsed_response=parsed_response,
                execution_meta=meta,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to record prompt execution %s for document %s", prompt_id, document_id)
        alert_tracker.record("TELEMETRY_WRITE_FAILED", {"prompt_id": prompt_id})
        return False
    return True
