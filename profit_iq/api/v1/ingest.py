"""Inbound email webhook: ``/ingest/email/{token}``.

Public (no bearer token); the per-project ingest token in the URL routes
the message. Accepts SendGrid forms, Postmark JSON and raw RFC 822 bodies.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from profit_iq.core.config import get_settings
from profit_iq.core.dependencies import get_blob_storage, get_db
from profit_iq.core.errors import ValidationError
from profit_iq.core.storage import BlobStorage
from profit_iq.schemas.document import IngestHealthResponse, IngestResponse
from profit_iq.services.email_ingest import ingest_email
from profit_iq.services.email_parsing import (
    ParsedEmail,
    parse_postmark_payload,
    parse_raw_email,
    parse_sendgrid_form,
)
from profit_iq.services.project_service import get_project_by_ingest_token
from profit_iq.utils.alerting import alert_tracker
from profit_iq.utils.rate_limit import get_client_ip, rate_limiter

router = APIRouter()
logger = logging.getLogger(__name__)


def _ensure_ingest_enabled() -> None:
    if not get_settings().enable_email_ingest:
        raise HTTPException(404, "Not found")


def _check_rate_limit(request: Request) -> None:
    settings = get_settings()
    ip = get_client_ip(request) or "unknown"
    allowed, _ = rate_limiter.allow(f"email_ingest:ip:{ip}", settings.rate_limit_ingest_ip_per_min, 60)
    if not allowed:
        alert_tracker.record("RATE_LIMIT_BLOCKED", {"path": request.url.path, "ip": ip})
        raise HTTPException(429, "Too Many Requests")


def _project_for_token(db: Session, token: str, request: Request):
    project = get_project_by_ingest_token(db, token)
    if project is None:
        alert_tracker.record("EMAIL_INGEST_TOKEN_INVALID", {"ip": get_client_ip(request)})
        raise HTTPException(404, "Invalid ingest token")
    return project


async def _parse_request(request: Request) -> ParsedEmail:
    content_type = (request.headers.get("content-type") or "").lower()
    if "multipart/form-data" in content_type:
        form = await request.form()
        return await parse_sendgrid_form(form)
    if "application/json" in content_type:
        try:
            data = await request.json()
        except json.JSONDecodeError as exc:
            raise ValidationError("Invalid JSON payload") from exc
        return parse_postmark_payload(data)
    return parse_raw_email(await request.body())


@router.post("/ingest/email/{token}", response_model=IngestResponse)
async def ingest_inbound_email(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    _ensure_ingest_enabled()
    _check_rate_limit(request)
    project = _project_for_token(db, token, request)

    email = await _parse_request(request)
    outcome = ingest_email(db, project=project, email=email, storage=storage)

    return IngestResponse(
        email_id=str(outcome.email_document.id),
        project_id=str(project.id),
        subject=email.subject,
        from_address=email.from_address,
        attachments_processed=len(outcome.attachments),
        attachments=outcome.attachments,
    )


@router.get("/ingest/email/{token}", response_model=IngestHealthResponse)
async def ingest_health(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """Readiness check some mail providers call before enabling a route."""
    _ensure_ingest_enabled()
    project = _project_for_token(db, token, request)
    return IngestHealthResponse(project=project.name)


@router.head("/ingest/email/{token}")
async def ingest_head(
    token: str,
    db: Session = Depends(get_db),
):
    _ensure_ingest_enabled()
    if get_project_by_ingest_token(db, token) is None:
        return Response(status_code=404)
    return Response(status_code=200)
