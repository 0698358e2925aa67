"""Inbound email adapters.

Three transports are supported, each normalized to ``ParsedEmail``:

* SendGrid Inbound Parse (``multipart/form-data``),
* Postmark Inbound (``application/json``),
* raw RFC 822 messages (anything else).

Attachments smaller than ``EMAIL_MIN_ATTACHMENT_BYTES`` are dropped; they
are almost always signature images or tracking pixels.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any, Optional

from profit_iq.core.config import get_settings
from profit_iq.core.errors import ValidationError

logger = logging.getLogger(__name__)

NO_SUBJECT = "(No Subject)"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_NUMBERED_ATTACHMENTS = 10

FINANCIAL_EXTENSIONS = (".pdf", ".xlsx", ".xls", ".csv", ".doc", ".docx")
FINANCIAL_KEYWORDS = ("invoice", "quote", "estimate", "receipt", "bill", "statement", "po", "purchase", "order")

_AMOUNT_RE = re.compile(r"\$[\d,]+\.?\d*|\b(?:USD|CAD|EUR)\s*[\d,]+\.?\d*", re.IGNORECASE)
_DATE_RE = re.compile(
    r"\b(?:\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"
    r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})",
    re.IGNORECASE,
)
_REFERENCE_RE = re.compile(r"\b(?:Invoice|INV|Quote|QT|PO|Purchase Order|Estimate|EST)[#:\s]*[\w\-]+", re.IGNORECASE)


@dataclass
class ParsedAttachment:
    filename: str
    content_type: str
    size: int
    content: bytes


@dataclass
class ParsedEmail:
    from_address: str
    to_address: str
    subject: str
    body: str
    received_at: datetime
    html_body: Optional[str] = None
    attachments: list[ParsedAttachment] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    def as_eml(self) -> str:
        """Plain-text rendering stored as the email document's blob."""
        return (
            f"From: {self.from_address}\n"
            f"To: {self.to_address}\n"
            f"Subject: {self.subject}\n"
            f"Date: {self.received_at.isoformat()}\n"
            f"\n"
            f"{self.body}"
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _address(value: Optional[str]) -> str:
    if not value:
        return ""
    _, addr = parseaddr(value)
    return addr or value.strip()


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _now()
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable email date %r, using now", value)
            return _now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _keep_attachments(attachments: list[ParsedAttachment], min_bytes: Optional[int]) -> list[ParsedAttachment]:
    threshold = get_settings().email_min_attachment_bytes if min_bytes is None else min_bytes
    kept = [att for att in attachments if att.size >= threshold]
    skipped = len(attachments) - len(kept)
    if skipped:
        logger.debug("Skipped %d attachment(s) under %d bytes", skipped, threshold)
    return kept


# --- SendGrid ---


async def _read_upload(value: Any) -> Optional[tuple[str, str, bytes]]:
    """Return (filename, content_type, bytes) for an uploaded form part."""
    if value is None or isinstance(value, str) or not hasattr(value, "read"):
        return None
    content = await value.read()
    return (
        getattr(value, "filename", None) or "attachment",
        getattr(value, "content_type", None) or DEFAULT_CONTENT_TYPE,
        content,
    )


async def parse_sendgrid_form(form, *, min_attachment_bytes: Optional[int] = None) -> ParsedEmail:
    """Normalize a SendGrid Inbound Parse form (Starlette ``FormData``)."""
    attachments: list[ParsedAttachment] = []
    seen_keys: set[str] = set()

    info_raw = form.get("attachment-info")
    if info_raw:
        try:
            info = json.loads(info_raw)
        except (TypeError, ValueError):
            logger.warning("Failed to parse SendGrid attachment-info")
            info = {}
        for key, meta in (info or {}).items():
            upload = await _read_upload(form.get(key))
            if upload is None:
                continue
            seen_keys.add(key)
            filename, content_type, content = upload
            meta = meta if isinstance(meta, dict) else {}
            attachments.append(
                ParsedAttachment(
                    filename=meta.get("filename") or filename,
                    content_type=meta.get("type") or content_type,
                    size=len(content),
                    content=content,
                )
            )

    for i in range(1, MAX_NUMBERED_ATTACHMENTS + 1):
        key = f"attachment{i}"
        if key in seen_keys:
            continue
        upload = await _read_upload(form.get(key))
        if upload is None:
            continue
        filename, content_type, content = upload
        attachments.append(
            ParsedAttachment(filename=filename, content_type=content_type, size=len(content), content=content)
        )

    return ParsedEmail(
        from_address=_address(form.get("from")),
        to_address=_address(form.get("to")),
        subject=form.get("subject") or NO_SUBJECT,
        body=form.get("text") or "",
        html_body=form.get("html") or None,
        received_at=_now(),
        attachments=_keep_attachments(attachments, min_attachment_bytes),
    )


# --- Postmark ---


def parse_postmark_payload(data: dict[str, Any], *, min_attachment_bytes: Optional[int] = None) -> ParsedEmail:
    """Normalize a Postmark Inbound JSON payload."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid email payload")

    from_full = data.get("FromFull") or {}
    to_full = data.get("ToFull") or []
    from_address = (from_full.get("Email") if isinstance(from_full, dict) else None) or _address(data.get("From"))
    to_address = ""
    if isinstance(to_full, list) and to_full and isinstance(to_full[0], dict):
        to_address = to_full[0].get("Email") or ""
    to_address = to_address or _address(data.get("To"))

    attachments: list[ParsedAttachment] = []
    for att in data.get("Attachments") or []:
        try:
            content = base64.b64decode(att.get("Content") or "", validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Invalid attachment encoding") from exc
        attachments.append(
            ParsedAttachment(
                filename=att.get("Name") or "attachment",
                content_type=att.get("ContentType") or DEFAULT_CONTENT_TYPE,
                size=len(content),
                content=content,
            )
        )

    headers = {
        str(h.get("Name")): str(h.get("Value", ""))
        for h in data.get("Headers") or []
        if isinstance(h, dict) and h.get("Name")
    }

    return ParsedEmail(
        from_address=from_address or "",
        to_address=to_address,
        subject=data.get("Subject") or NO_SUBJECT,
        body=data.get("TextBody") or "",
        html_body=data.get("HtmlBody") or None,
        received_at=_parse_date(data.get("Date")),
        attachments=_keep_attachments(attachments, min_attachment_bytes),
        headers=headers,
    )


# --- Raw RFC 822 ---


def _part_text(message: EmailMessage, subtype: str) -> Optional[str]:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def parse_raw_email(raw: bytes | str, *, min_attachment_bytes: Optional[int] = None) -> ParsedEmail:
    """Parse a raw RFC 822 message."""
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not raw or not raw.strip():
        raise ValidationError("Empty email body")

    message = BytesParser(policy=policy.default).parsebytes(raw)

    attachments: list[ParsedAttachment] = []
    for part in message.iter_attachments():
        content = part.get_payload(decode=True) or b""
        attachments.append(
            ParsedAttachment(
                filename=part.get_filename() or "attachment",
                content_type=part.get_content_type() or DEFAULT_CONTENT_TYPE,
                size=len(content),
                content=content,
            )
        )

    return ParsedEmail(
        from_address=_address(str(message.get("From", ""))),
        to_address=_address(str(message.get("To", ""))),
        subject=str(message.get("Subject") or "") or NO_SUBJECT,
        body=_part_text(message, "plain") or "",
        html_body=_part_text(message, "html"),
        received_at=_parse_date(message.get("Date")),
        attachments=_keep_attachments(attachments, min_attachment_bytes),
        headers={str(k): str(v) for k, v in message.items()},
    )


# --- Heuristics ---


def is_financial_attachment(filename: str, content_type: str) -> bool:
    """Guess whether an attachment is a financial document worth extracting."""
    name = (filename or "").lower()
    ctype = (content_type or "").lower()
    if name.endswith(FINANCIAL_EXTENSIONS):
        return True
    if any(keyword in name for keyword in FINANCIAL_KEYWORDS):
        return True
    return "pdf" in ctype or "spreadsheet" in ctype or "excel" in ctype


def extract_financial_context(body: str) -> dict[str, list]:
    """Pull currency amounts (with surrounding text), dates and document references from *body*."""
    body = body or ""
    amounts = []
    for match in _AMOUNT_RE.finditer(body):
        digits = re.sub(r"[^\d.]", "", match.group(0))
        try:
            value = float(digits)
        except ValueError:
            continue
        if value <= 0:
            continue
        start = max(0, match.start() - 50)
        end = min(len(body), match.end() + 50)
        amounts.append({"value": value, "context": body[start:end].strip()})

    return {
        "amounts": amounts,
        "dates": [m.group(0) for m in _DATE_RE.finditer(body)],
        "references": [m.group(0) for m in _REFERENCE_RE.finditer(body)],
    }
