"""Document extraction contracts — the structured output the model must produce."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from profit_iq.schemas.document import ExtractedDocumentType

ExtractedCategory = Literal["Labor", "Materials", "Equipment", "Subcontractors", "Other"]

# Monetary values must arrive as JSON numbers, never as formatted strings.
Money = Annotated[float, Field(strict=True)]


def _check_iso_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise ValueError("Dates must use YYYY-MM-DD")
    if parsed.isoformat() != value:
        raise ValueError("Dates must use YYYY-MM-DD")
    return value


class ExtractedVendor(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class ExtractedDocumentInfo(BaseModel):
    number: Optional[str] = None
    date: str
    due_date: Optional[str] = None
    po_number: Optional[str] = None
    valid_until: Optional[str] = None
    project_reference: Optional[str] = None

    @field_validator("date", "due_date", "valid_until")
    @classmethod
    def iso_dates(cls, v: Optional[str]) -> Optional[str]:
        return _check_iso_date(v)


class ExtractedLineItem(BaseModel):
    description: str
    quantity: Optional[Money] = None
    unit: Optional[str] = None
    unit_price: Optional[Money] = None
    total: Money
    category: ExtractedCategory


class ExtractedTotals(BaseModel):
    subtotal: Optional[Money] = None
    tax: Optional[Money] = None
    total: Money
    contingency: Optional[Money] = None


class ExtractionResult(BaseModel):
    """Validated model output; persisted as ``ProjectDocument.raw_extraction``."""

    document_type: ExtractedDocumentType
    confidence: Annotated[float, Field(ge=0.0, le=1.0, strict=True)]
    vendor: ExtractedVendor
    document_info: ExtractedDocumentInfo
    line_items: list[ExtractedLineItem]
    totals: ExtractedTotals
    notes: Optional[str] = None
