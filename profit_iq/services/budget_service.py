"""Budget vs. actual aggregation.

Actuals only ever include line items of ``confirmed`` documents. Every
summary lists all five budget categories, zero-filled where no estimate or
actual exists. Variance is estimated minus actual, so a positive value
means under budget.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.errors import NotFoundError, PersistenceError, ValidationError
from profit_iq.models.project import BudgetCategoryEstimate, LineItem, Project, ProjectDocument
from profit_iq.schemas.document import DocumentStatus
from profit_iq.schemas.project import BudgetCategory

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class BudgetSummaryItem:
    category: str
    estimated_amount: float
    actual_amount: float
    variance: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProjectTotals:
    contract_value: float
    total_estimated: float
    total_actual: float
    margin_amount: float
    margin_percent: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _estimates_by_category(db: Session, project_id) -> dict[str, Decimal]:
    rows = (
        db.query(BudgetCategoryEstimate.category, BudgetCategoryEstimate.estimated_amount)
        .filter(BudgetCategoryEstimate.project_id == project_id)
        .all()
    )
    return {category: _as_decimal(amount) for category, amount in rows}


def _actuals_by_category(db: Session, project_id) -> dict[Optional[str], Decimal]:
    rows = (
        db.query(LineItem.category, func.sum(LineItem.total))
        .join(ProjectDocument, LineItem.document_id == ProjectDocument.id)
        .filter(
            LineItem.project_id == project_id,
            ProjectDocument.status == DocumentStatus.CONFIRMED.value,
        )
        .group_by(LineItem.category)
        .all()
    )
    return {category: _as_decimal(total) for category, total in rows}


def _summary_rows(db: Session, project_id) -> list[tuple[str, Decimal, Decimal]]:
    estimates = _estimates_by_category(db, project_id)
    actuals = _actuals_by_category(db, project_id)
    return [
        (category.value, estimates.get(category.value, ZERO), actuals.get(category.value, ZERO))
        for category in BudgetCategory
    ]


def get_project_budget_summary(db: Session, project_id) -> list[BudgetSummaryItem]:
    """Estimated, actual and variance for each of the five categories, in fixed order."""
    return [
        BudgetSummaryItem(
            category=category,
            estimated_amount=float(estimated),
            actual_amount=float(actual),
            variance=float(estimated - actual),
        )
        for category, estimated, actual in _summary_rows(db, project_id)
    ]


def compute_totals(contract_value, rows: list[tuple[str, Decimal, Decimal]]) -> ProjectTotals:
    contract = _as_decimal(contract_value)
    total_estimated = sum((estimated for _, estimated, _ in rows), ZERO)
    total_actual = sum((actual for _, _, actual in rows), ZERO)
    margin = contract - total_actual
    margin_percent = float(margin / contract * 100) if contract > 0 else 0.0
    return ProjectTotals(
        contract_value=float(contract),
        total_estimated=float(total_estimated),
        total_actual=float(total_actual),
        margin_amount=float(margin),
        margin_percent=margin_percent,
    )


def get_project_totals(db: Session, project_id) -> ProjectTotals:
    """Contract value, summed estimates/actuals and margin for one project."""
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return compute_totals(project.contract_value, _summary_rows(db, project_id))


def list_project_summaries(db: Session, owner_id: str) -> list[tuple[Project, ProjectTotals]]:
    projects = (
        db.query(Project)
        .filter(Project.owner_id == owner_id)
        .order_by(Project.created_at.desc())
        .all()
    )
    return [(project, compute_totals(project.contract_value, _summary_rows(db, project.id))) for project in projects]


def update_budget_estimate(db: Session, project_id, category: BudgetCategory, amount: float) -> BudgetCategoryEstimate:
    """Upsert the estimate for one category of a project."""
    category = BudgetCategory(category)
    if amount is None or amount < 0:
        raise ValidationError("Estimated amount must be zero or greater")

    estimate = (
        db.query(BudgetCategoryEstimate)
        .filter(
            BudgetCategoryEstimate.project_id == project_id,
            BudgetCategoryEstimate.category == category.value,
        )
        .one_or_none()
    )
    if estimate is None:
        estimate = BudgetCategoryEstimate(project_id=project_id, category=category.value)
        db.add(estimate)
    estimate.estimated_amount = Decimal(str(amount))

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update %s estimate for project %s", category.value, project_id)
        raise PersistenceError("Failed to update budget") from exc
    db.refresh(estimate)
    return estimate
