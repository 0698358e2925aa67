from datetime import date, datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class BudgetCategory(StrEnum):
    LABOR = "Labor"
    MATERIALS = "Materials"
    EQUIPMENT = "Equipment"
    SUBCONTRACTORS = "Subcontractors"
    OTHER = "Other"


class ProjectCreate(BaseModel):
    name: str = Field(..., max_length=256)
    client_name: Optional[str] = None
    address: Optional[str] = None
    contract_value: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name is required")
        return v

    @field_validator("client_name", "address")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=256)
    client_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[ProjectStatus] = None
    contract_value: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectOut(BaseModel):
    id: str
    name: str
    client_name: Optional[str] = None
    address: Optional[str] = None
    status: ProjectStatus
    contract_value: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    ingest_token: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Budget ---


class BudgetEstimateUpdate(BaseModel):
    category: BudgetCategory
    estimated_amount: float = Field(..., ge=0)


class BudgetEstimateOut(BaseModel):
    project_id: str
    category: BudgetCategory
    estimated_amount: float


class BudgetSummaryItemOut(BaseModel):
    category: BudgetCategory
    estimated_amount: float
    actual_amount: float
    variance: float


class ProjectTotalsOut(BaseModel):
    contract_value: float
    total_estimated: float
    total_actual: float
    margin_amount: float
    margin_percent: float


class ProjectSummaryOut(BaseModel):
    project: ProjectOut
    totals: ProjectTotalsOut
    budget: list[BudgetSummaryItemOut]


class SuccessResponse(BaseModel):
    success: bool = True
