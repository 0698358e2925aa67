"""Read-only project tools for the financial assistant.

Every tool is bound to one project at construction time and only reads
through the budget engine and the document/line item tables.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from profit_iq.core.errors import NotFoundError, ValidationError
from profit_iq.models.project import LineItem, Project, ProjectDocument
from profit_iq.schemas.document import DocumentStatus
from profit_iq.schemas.project import BudgetCategory
from profit_iq.services.budget_service import get_project_budget_summary, get_project_totals

logger = logging.getLogger(__name__)

DEFAULT_LINE_ITEM_LIMIT = 20


class NoArgs(BaseModel):
    pass


class BudgetDetailsArgs(BaseModel):
    category: Optional[BudgetCategory] = Field(default=None, description="Optional: specific category to filter by")


class DocumentsArgs(BaseModel):
    vendor_name: Optional[str] = Field(default=None, description="Filter by vendor name (partial match)")
    document_type: Optional[Literal["invoice", "quote", "estimate", "change_order", "receipt", "other"]] = Field(
        default=None, description="Filter by document type"
    )
    status: Optional[DocumentStatus] = Field(default=None, description="Filter by document status")


class LineItemsArgs(BaseModel):
    category: Optional[BudgetCategory] = Field(default=None, description="Filter by budget category")
    limit: int = Field(default=DEFAULT_LINE_ITEM_LIMIT, ge=1, le=500, description="Maximum number of items to return")


class CostBreakdownArgs(BaseModel):
    group_by: Literal["vendor", "category"] = Field(..., description="Group costs by vendor or by category")


def _num(value) -> Optional[float]:
    return float(value) if value is not None else None


def budget_status(variance: float) -> str:
    if variance > 0:
        return "under_budget"
    if variance < 0:
        return "over_budget"
    return "on_budget"


def variance_percent(variance: float, estimated: float) -> str:
    if estimated > 0:
        return f"{variance / estimated * 100:.1f}"
    return "N/A"


class ProjectChatTools:
    """Tool set for a single project; construct one per conversation."""

    def __init__(self, db: Session, project_id) -> None:
        self.db = db
        self.project_id = project_id
        self._tools: dict[str, tuple[str, type[BaseModel], Callable[..., dict[str, Any]]]] = {
            "get_project_status": (
                "Get the current status and financial summary of the project including contract value, costs, and margin",
                NoArgs,
                self.get_project_status,
            ),
            "get_budget_details": (
                "Get detailed budget information for a specific category or all categories",
                BudgetDetailsArgs,
                self.get_budget_details,
            ),
            "get_documents": (
                "Get a list of documents for the project, optionally filtered by vendor name, document type, or status",
                DocumentsArgs,
                self.get_documents,
            ),
            "get_line_items": (
                "Get line items from confirmed documents, optionally filtered by category",
                LineItemsArgs,
                self.get_line_items,
            ),
            "get_cost_breakdown": (
                "Get a breakdown of costs by vendor or category to understand spending patterns",
                CostBreakdownArgs,
                self.get_cost_breakdown,
            ),
        }

    # --- registry ---

    def definitions(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "description": description, "parameters": args_model.model_json_schema()}
            for name, (description, args_model, _) in self._tools.items()
        ]

    def execute(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        entry = self._tools.get(name)
        if entry is None:
            raise NotFoundError(f"Unknown tool: {name}")
        _, args_model, handler = entry
        try:
            args = args_model.model_validate(arguments or {})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid arguments for {name}") from exc
        logger.debug("Executing chat tool %s for project %s", name, self.project_id)
        return handler(**args.model_dump())

    # --- tools ---

    def get_project_status(self) -> dict[str, Any]:
        project = self.db.get(Project, self.project_id)
        if project is None:
            return {"error": "Project not found"}
        totals = get_project_totals(self.db, self.project_id)
        summary = get_project_budget_summary(self.db, self.project_id)
        return {
            "project": {
                "name": project.name,
                "client_name": project.client_name,
                "status": project.status,
                "start_date": project.start_date.isoformat() if project.start_date else None,
                "end_date": project.end_date.isoformat() if project.end_date else None,
            },
            "financials": totals.to_dict(),
            "budget_by_category": [
                {
                    "category": item.category,
                    "estimated": item.estimated_amount,
                    "actual": item.actual_amount,
                    "variance": item.variance,
                    "variance_percent": variance_percent(item.variance, item.estimated_amount),
                }
                for item in summary
            ],
        }

    def get_budget_details(self, category: Optional[BudgetCategory] = None) -> dict[str, Any]:
        summary = get_project_budget_summary(self.db, self.project_id)
        if category is not None:
            summary = [item for item in summary if item.category == BudgetCategory(category).value]
        return {
            "categories": [
                {
                    "category": item.category,
                    "estimated": item.estimated_amount,
                    "actual": item.actual_amount,
                    "variance": item.variance,
                    "status": budget_status(item.variance),
                }
                for item in summary
            ],
            "totals": {
                "total_estimated": sum(item.estimated_amount for item in summary),
                "total_actual": sum(item.actual_amount for item in summary),
                "total_variance": sum(item.variance for item in summary),
            },
        }

    def get_documents(
        self,
        vendor_name: Optional[str] = None,
        document_type: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
    ) -> dict[str, Any]:
        documents = (
            self.db.query(ProjectDocument)
            .filter(ProjectDocument.project_id == self.project_id)
            .order_by(ProjectDocument.created_at.desc())
            .all()
        )
        if vendor_name:
            needle = vendor_name.lower()
            documents = [d for d in documents if d.vendor_name and needle in d.vendor_name.lower()]
        if document_type:
            documents = [d for d in documents if d.document_type == document_type]
        if status:
            documents = [d for d in documents if d.status == DocumentStatus(status).value]
        return {
            "count": len(documents),
            "documents": [
                {
                    "id": str(d.id),
                    "file_name": d.file_name,
                    "vendor_name": d.vendor_name,
                    "document_type": d.document_type,
                    "status": d.status,
                    "document_date": d.document_date.isoformat() if d.document_date else None,
                    "total_amount": _num(d.total_amount),
                }
                for d in documents
            ],
        }

    def get_line_items(
        self,
        category: Optional[BudgetCategory] = None,
        limit: int = DEFAULT_LINE_ITEM_LIMIT,
    ) -> dict[str, Any]:
        query = (
            self.db.query(LineItem)
            .join(ProjectDocument, LineItem.document_id == ProjectDocument.id)
            .filter(
                LineItem.project_id == self.project_id,
                ProjectDocument.status == DocumentStatus.CONFIRMED.value,
            )
        )
        if category is not None:
            query = query.filter(LineItem.category == BudgetCategory(category).value)
        items = query.order_by(LineItem.created_at, LineItem.sort_order).all()
        limited = items[:limit]
        total = sum((item.total for item in items), Decimal("0"))
        return {
            "total_count": len(items),
            "returned_count": len(limited),
            "total_amount": float(total),
            "items": [
                {
                    "description": item.description,
                    "quantity": _num(item.quantity),
                    "unit": item.unit,
                    "unit_price": _num(item.unit_price),
                    "total": float(item.total),
                    "category": item.category,
                }
                for item in limited
            ],
        }

    def get_cost_breakdown(self, group_by: str) -> dict[str, Any]:
        if group_by == "vendor":
            documents = (
                self.db.query(ProjectDocument)
                .filter(
                    ProjectDocument.project_id == self.project_id,
                    ProjectDocument.status == DocumentStatus.CONFIRMED.value,
                )
                .all()
            )
            by_vendor: dict[str, Decimal] = {}
            for document in documents:
                vendor = document.vendor_name or "Unknown"
                amount = document.total_amount if document.total_amount is not None else Decimal("0")
                by_vendor[vendor] = by_vendor.get(vendor, Decimal("0")) + Decimal(str(amount))
            ordered = sorted(by_vendor.items(), key=lambda pair: pair[1], reverse=True)
            return {
                "grouped_by": "vendor",
                "breakdown": [{"vendor": vendor, "amount": float(amount)} for vendor, amount in ordered],
                "total": float(sum(by_vendor.values(), Decimal("0"))),
            }

        summary = get_project_budget_summary(self.db, self.project_id)
        return {
            "grouped_by": "category",
            "breakdown": [
                {
                    "category": item.category,
                    "estimated": item.estimated_amount,
                    "actual": item.actual_amount,
                    "variance": item.variance,
                }
                for item in summary
            ],
            "total": sum(item.actual_amount for item in summary),
        }


def build_system_prompt(project: Project) -> str:
    """System prompt for the project assistant; the model answers through the tools above."""
    contract = f"${float(project.contract_value):,.2f}" if project.contract_value is not None else "not set"
    return (
        "You are a financial assistant for a construction contractor. "
        f'You are helping with the project "{project.name}"'
        + (f" for client {project.client_name}" if project.client_name else "")
        + f". The contract value is {contract}.\n\n"
        "Use the available tools to look up budgets, actual costs, documents and line items "
        "before answering. Only confirmed documents count toward actual costs. "
        "Variance is estimated minus actual: positive means under budget, negative means over budget. "
        "Be concise, show dollar amounts with two decimals, and never invent numbers the tools did not return."
    )
