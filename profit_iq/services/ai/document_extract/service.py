"""Document extraction adapter.

Sends document bytes and the extraction prompts to the resolved provider,
then parses and validates the reply into an ``ExtractionResult``. Every
failure surfaces as an ``AdapterFailure`` subclass; persistence and
telemetry are the caller's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from profit_iq.core.errors import ModelFailure, ParseFailure
from profit_iq.services.ai.common.json_tools import strip_code_fences
from profit_iq.services.ai.common.providers import Attachment, ProviderResult
from profit_iq.services.ai.common.router import DOCUMENT_EXTRACT_SCOPE, resolve
from profit_iq.services.ai.document_extract.contracts import ExtractionResult
from profit_iq.services.ai.document_extract.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_USER_PROMPT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionRun:
    result: ExtractionResult
    provider_result: ProviderResult
    latency_ms: int


def parse_extraction(raw_text: str, *, provider_result: ProviderResult | None = None) -> ExtractionResult:
    """Parse raw model text into a validated ``ExtractionResult``.

    Markdown code fences are stripped first. Non-JSON output and schema
    mismatches both raise ``ParseFailure`` with the raw text attached.
    """
    cleaned = strip_code_fences(raw_text or "")
    try:
        payload = json.loads(cleaned)
    except ValueError as exc:
        logger.warning("Extraction output is not valid JSON: %s", (raw_text or "")[:200])
        raise ParseFailure(
            "Model output is not valid JSON",
            raw_text=raw_text or "",
            provider_result=provider_result,
        ) from exc

    if not isinstance(payload, dict):
        raise ParseFailure(
            "Model output is not a JSON object",
            raw_text=raw_text or "",
            provider_result=provider_result,
        )

    try:
        return ExtractionResult.model_validate(payload)
    except PydanticValidationError as exc:
        logger.warning("Extraction output failed validation: %s", exc.errors(include_url=False)[:5])
        raise ParseFailure(
            "Model output does not match the extraction schema",
            raw_text=raw_text or "",
            provider_result=provider_result,
        ) from exc


async def run_extraction(
    content: bytes,
    mime_type: str | None,
    *,
    file_name: str = "document.pdf",
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ExtractionRun:
    """Run one extraction round-trip against the configured model.

    Raises ``ModelFailure`` when the configured provider cannot be built, or
    when its call errors or exceeds its time budget. Raises ``ParseFailure``
    when the reply cannot be validated.
    """
    config = resolve(
        DOCUMENT_EXTRACT_SCOPE,
        override_provider=override_provider,
        override_model=override_model,
    )
    attachment = Attachment(
        content=content,
        mime_type=mime_type or "application/pdf",
        filename=file_name,
    )

    t0 = time.monotonic()
    try:
        provider_result = await asyncio.wait_for(
            config.provider.generate(
                EXTRACTION_USER_PROMPT,
                system_prompt=EXTRACTION_SYSTEM_PROMPT,
                attachment=attachment,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout_seconds=config.timeout_seconds,
            ),
            timeout=config.timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.warning(
            "Extraction timed out after %.0fs (provider=%s)",
            config.timeout_seconds,
            config.provider.name,
        )
        raise ModelFailure("Model call timed out") from exc
    except Exception as exc:
        logger.exception("Extraction provider call failed (provider=%s)", config.provider.name)
        raise ModelFailure("Model call failed") from exc

    latency_ms = int((time.monotonic() - t0) * 1000)
    result = parse_extraction(provider_result.raw_text, provider_result=provider_result)
    return ExtractionRun(result=result, provider_result=provider_result, latency_ms=latency_ms)
