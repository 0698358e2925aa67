import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from profit_iq.core.auth import CurrentUser, get_current_user
from profit_iq.core.dependencies import get_db
from profit_iq.schemas.document import (
    DocumentListResponse,
    DocumentStatus,
    DocumentType,
    EmailDocumentOut,
    EmailListResponse,
)
from profit_iq.schemas.project import (
    BudgetEstimateOut,
    BudgetEstimateUpdate,
    BudgetSummaryItemOut,
    ProjectCreate,
    ProjectOut,
    ProjectSummaryOut,
    ProjectTotalsOut,
    ProjectUpdate,
    SuccessResponse,
)
from profit_iq.services import budget_service, project_service
from profit_iq.services.document_service import document_to_out, list_documents
from profit_iq.services.email_ingest import email_context, list_email_documents

router = APIRouter()
logger = logging.getLogger(__name__)


def _project_to_out(project) -> ProjectOut:
    return ProjectOut(**project_service.project_to_out(project))


def _budget_out(db: Session, project_id) -> list[BudgetSummaryItemOut]:
    return [
        BudgetSummaryItemOut(**item.to_dict())
        for item in budget_service.get_project_budget_summary(db, project_id)
    ]


@router.get("/projects", response_model=list[ProjectOut])
async def list_projects(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [_project_to_out(p) for p in project_service.list_projects(db, current_user.id)]


@router.post("/projects", response_model=ProjectOut, status_code=201)
async def create_project(
    payload: ProjectCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.create_project(db, owner_id=current_user.id, payload=payload)
    return _project_to_out(project)


@router.get("/projects/summaries", response_model=list[ProjectSummaryOut])
async def list_project_summaries(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        ProjectSummaryOut(
            project=_project_to_out(project),
            totals=ProjectTotalsOut(**totals.to_dict()),
            budget=_budget_out(db, project.id),
        )
        for project, totals in budget_service.list_project_summaries(db, current_user.id)
    ]


@router.get("/projects/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _project_to_out(project_service.get_owned_project(db, project_id, current_user.id))


@router.put("/projects/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str,
    payload: ProjectUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    return _project_to_out(project_service.update_project(db, project, payload))


@router.delete("/projects/{project_id}", response_model=SuccessResponse)
async def delete_project(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    project_service.delete_project(db, project)
    return SuccessResponse()


@router.get("/projects/{project_id}/summary", response_model=ProjectSummaryOut)
async def get_project_summary(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    totals = budget_service.get_project_totals(db, project.id)
    return ProjectSummaryOut(
        project=_project_to_out(project),
        totals=ProjectTotalsOut(**totals.to_dict()),
        budget=_budget_out(db, project.id),
    )


@router.get("/projects/{project_id}/budget", response_model=list[BudgetSummaryItemOut])
async def get_budget(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    return _budget_out(db, project.id)


@router.put("/projects/{project_id}/budget", response_model=BudgetEstimateOut)
async def update_budget(
    project_id: str,
    payload: BudgetEstimateUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    estimate = budget_service.update_budget_estimate(db, project.id, payload.category, payload.estimated_amount)
    return BudgetEstimateOut(
        project_id=str(estimate.project_id),
        category=estimate.category,
        estimated_amount=float(estimate.estimated_amount),
    )


@router.get("/projects/{project_id}/documents", response_model=DocumentListResponse)
async def get_project_documents(
    project_id: str,
    status: Optional[DocumentStatus] = Query(None),
    document_type: Optional[DocumentType] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    documents = list_documents(db, project.id, status=status, document_type=document_type)
    return DocumentListResponse(items=[document_to_out(d) for d in documents])


@router.get("/projects/{project_id}/emails", response_model=EmailListResponse)
async def get_project_emails(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = project_service.get_owned_project(db, project_id, current_user.id)
    items = []
    for email_doc in list_email_documents(db, project.id):
        data = document_to_out(email_doc)
        data["email_body"] = email_doc.email_body
        data["attachments"] = [document_to_out(att) for att in email_doc.attachments]
        data["financial_context"] = email_context(email_doc)
        items.append(EmailDocumentOut(**data))
    return EmailListResponse(items=items)
