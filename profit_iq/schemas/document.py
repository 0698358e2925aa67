from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from profit_iq.schemas.project import BudgetCategory


class DocumentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"


class DocumentType(StrEnum):
    INVOICE = "invoice"
    QUOTE = "quote"
    ESTIMATE = "estimate"
    CHANGE_ORDER = "change_order"
    RECEIPT = "receipt"
    OTHER = "other"
    EMAIL = "email"


# Types the model or a reviewer may assign. ``email`` is reserved for ingested
# email bodies.
ExtractedDocumentType = Literal["invoice", "quote", "estimate", "change_order", "receipt", "other"]


class LineItemOut(BaseModel):
    id: str
    document_id: str
    project_id: str
    description: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    total: float
    category: Optional[BudgetCategory] = None
    sort_order: Optional[int] = None


class DocumentOut(BaseModel):
    id: str
    project_id: str
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    document_type: Optional[DocumentType] = None
    status: DocumentStatus
    raw_extraction: Optional[dict[str, Any]] = None
    vendor_name: Optional[str] = None
    document_number: Optional[str] = None
    document_date: Optional[date] = None
    due_date: Optional[date] = None
    total_amount: Optional[float] = None
    confirmed_at: Optional[datetime] = None
    parent_document_id: Optional[str] = None
    email_from: Optional[str] = None
    email_to: Optional[str] = None
    email_subject: Optional[str] = None
    email_received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentDetail(DocumentOut):
    email_body: Optional[str] = None
    line_items: list[LineItemOut] = []


class DocumentListResponse(BaseModel):
    items: list[DocumentOut]


class EmailDocumentOut(DocumentOut):
    email_body: Optional[str] = None
    attachments: list[DocumentOut] = []
    financial_context: dict[str, Any] = {}


class EmailListResponse(BaseModel):
    items: list[EmailDocumentOut]


# --- Review / confirmation ---


class ConfirmLineItem(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    total: float
    category: BudgetCategory
    sort_order: Optional[int] = None


class ConfirmDocumentRequest(BaseModel):
    document_type: Optional[ExtractedDocumentType] = None
    vendor_name: Optional[str] = None
    document_number: Optional[str] = None
    document_date: Optional[date] = None
    due_date: Optional[date] = None
    total_amount: Optional[float] = None
    # Emptiness is checked by the confirmation engine so it surfaces as a 400.
    line_items: list[ConfirmLineItem] = []


class ExtractResponse(BaseModel):
    success: bool = True
    extraction: dict[str, Any]


# --- Email ingest ---


class IngestedAttachmentOut(BaseModel):
    id: str
    filename: str
    is_financial: bool
    size: int


class IngestResponse(BaseModel):
    success: bool = True
    email_id: str
    project_id: str
    subject: str
    from_address: str = Field(serialization_alias="from")
    attachments_processed: int
    attachments: list[IngestedAttachmentOut]


class IngestHealthResponse(BaseModel):
    status: str = "ok"
    project: str
    message: str = "Email ingestion endpoint is ready"
