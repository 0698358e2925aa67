import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from profit_iq.core.auth import CurrentUser, get_current_user
from profit_iq.core.dependencies import get_blob_storage, get_db
from profit_iq.core.storage import BlobStorage
from profit_iq.schemas.document import (
    ConfirmDocumentRequest,
    DocumentDetail,
    DocumentOut,
    ExtractResponse,
)
from profit_iq.schemas.project import SuccessResponse
from profit_iq.services import document_service
from profit_iq.services.confirmation_service import confirm_document, reject_document
from profit_iq.services.extraction_service import extract_document
from profit_iq.services.project_service import get_owned_project

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/documents/upload", response_model=DocumentOut, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    project = get_owned_project(db, project_id, current_user.id)
    content = await file.read()
    document = document_service.create_uploaded_document(
        db,
        project=project,
        owner_id=current_user.id,
        file_name=file.filename or "",
        content=content,
        mime_type=file.content_type,
        storage=storage,
    )
    return DocumentOut(**document_service.document_to_out(document))


@router.get("/documents/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    return DocumentDetail(**document_service.document_detail(document))


@router.delete("/documents/{document_id}", response_model=SuccessResponse)
async def delete_document(
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    document_service.delete_document(db, document, storage)
    return SuccessResponse()


@router.get("/documents/{document_id}/download")
async def download_document(
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    return RedirectResponse(storage.signed_url(document.file_path), status_code=302)


@router.post("/documents/{document_id}/extract", response_model=ExtractResponse)
async def extract(
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    result = await extract_document(db, document, storage)
    return ExtractResponse(extraction=result.model_dump(mode="json"))


@router.post("/documents/{document_id}/confirm", response_model=SuccessResponse)
async def confirm(
    document_id: str,
    payload: ConfirmDocumentRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    confirm_document(db, document, payload)
    return SuccessResponse()


@router.post("/documents/{document_id}/reject", response_model=SuccessResponse)
async def reject(
    document_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = document_service.get_owned_document(db, document_id, current_user.id)
    reject_document(db, document)
    return SuccessResponse()
