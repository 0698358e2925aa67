import logging
import secrets
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profit_iq.core.errors import AuthorizationError, NotFoundError, PersistenceError
from profit_iq.models.project import BudgetCategoryEstimate, Project
from profit_iq.schemas.project import BudgetCategory, ProjectCreate, ProjectStatus, ProjectUpdate

logger = logging.getLogger(__name__)

INGEST_TOKEN_BYTES = 12
CENT = Decimal("0.01")


def parse_id(value: Any, what: str = "Resource") -> uuid.UUID:
    """Parse a path/body identifier; malformed ids are reported as not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(f"{what} not found")


def generate_ingest_token() -> str:
    return secrets.token_urlsafe(INGEST_TOKEN_BYTES)


def to_money(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENT)


def project_to_out(project: Project) -> dict[str, Any]:
    return {
        "id": str(project.id),
        "name": project.name,
        "client_name": project.client_name,
        "address": project.address,
        "status": project.status,
        "contract_value": float(project.contract_value) if project.contract_value is not None else None,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "ingest_token": project.ingest_token,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def ensure_owner(project: Optional[Project], owner_id: str) -> Project:
    if project is None:
        raise NotFoundError("Project not found")
    if str(project.owner_id) != str(owner_id):
        raise AuthorizationError("Project not found")
    return project


def get_owned_project(db: Session, project_id: Any, owner_id: str) -> Project:
    project = db.get(Project, parse_id(project_id, "Project"))
    return ensure_owner(project, owner_id)


def get_project_by_ingest_token(db: Session, token: str) -> Optional[Project]:
    token = (token or "").strip()
    if not token:
        return None
    return db.query(Project).filter(Project.ingest_token == token).one_or_none()


def list_projects(db: Session, owner_id: str) -> list[Project]:
    return (
        db.query(Project)
        .filter(Project.owner_id == owner_id)
        .order_by(Project.created_at.desc())
        .all()
    )


def create_project(db: Session, *, owner_id: str, payload: ProjectCreate) -> Project:
    """Create a project together with one zero estimate per budget category."""
    project = Project(
        owner_id=owner_id,
        name=payload.name,
        client_name=payload.client_name,
        address=payload.address,
        status=ProjectStatus.ACTIVE.value,
        contract_value=to_money(payload.contract_value),
        start_date=payload.start_date,
        end_date=payload.end_date,
        ingest_token=generate_ingest_token(),
    )
    project.budget_estimates = [
        BudgetCategoryEstimate(category=category.value, estimated_amount=0) for category in BudgetCategory
    ]
    try:
        db.add(project)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create project for owner %s", owner_id)
        raise PersistenceError("Failed to create project") from exc
    db.refresh(project)
    logger.info("Project %s created by %s", project.id, owner_id)
    return project


def update_project(db: Session, project: Project, payload: ProjectUpdate) -> Project:
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field in {"name", "status"} and value is None:
            continue
        if field == "status":
            value = ProjectStatus(value).value
        if field == "contract_value":
            value = to_money(value)
        setattr(project, field, value)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update project %s", project.id)
        raise PersistenceError("Failed to update project") from exc
    db.refresh(project)
    return project


def delete_project(db: Session, project: Project) -> None:
    """Delete a project; estimates, documents and line items cascade with it."""
    project_id = project.id
    try:
        db.delete(project)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to delete project %s", project_id)
        raise PersistenceError("Failed to delete project") from exc
    logger.info("Project %s deleted", project_id)
