"""
API route: Documents (upload, parse, insights)
"""
from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from apps.api.authz import (
    AccessAuthorizer,
    RequestIdentity,
    assert_patient_access,
    get_access_authorizer,
    get_request_identity,
)
from apps.api.deps import get_extraction_service
from apps.api.schemas import (
    ApiModel,
    DocumentResponse,
    ExtractionResponse,
    RecordsResponse,
)
from apps.worker.pipeline import ingest_upload, request_parse
from apps.worker.pipeline_persistence import load_document
from apps.worker.steps.step00_validate import SUPPORTED_CONTENT_TYPES, normalize_content_type
from packages.db.database import get_db
from packages.db.read_model import get_document, get_document_insights, list_documents
from packages.shared.services import ExtractionService
from packages.shared.storage import get_blob_path

router = APIRouter(tags=["documents"])
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))

_EXTENSION_TYPES = {".pdf": "application/pdf", ".txt": "text/plain"}


class ParseResponse(ApiModel):
    document: DocumentResponse
    extraction_id: str
    created: dict[str, int]
    warnings: list[dict[str, Any]]


class InsightsResponse(ApiModel):
    document: DocumentResponse
    extraction: ExtractionResponse | None
    created: RecordsResponse


def _resolve_content_type(file: UploadFile) -> str:
    content_type = normalize_content_type(file.content_type or "")
    if content_type in SUPPORTED_CONTENT_TYPES:
        return content_type
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[ext]
    raise HTTPException(status_code=400, detail="Only PDF and plain-text files are accepted")


@router.post(
    "/patients/{patient_user_id}/documents",
    response_model=DocumentResponse,
    status_code=201,
)
async def upload_document(
    patient_user_id: str,
    file: UploadFile = File(...),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Upload a PDF or text document for a patient."""
    assert_patient_access(identity, patient_user_id, authorize)

    content_type = _resolve_content_type(file)
    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Upload exceeds configured size limit")
    if content_type == "application/pdf" and not content.startswith(b"%PDF-"):
        raise HTTPException(status_code=400, detail="Uploaded file is not a valid PDF signature")

    default_name = "upload.pdf" if content_type == "application/pdf" else "upload.txt"
    doc = await run_in_threadpool(
        ingest_upload,
        patient_user_id=patient_user_id,
        uploader_id=identity.user_id if identity else patient_user_id,
        file_name=file.filename or default_name,
        content_type=content_type,
        data=content,
    )
    return DocumentResponse.from_row(doc)


@router.get(
    "/patients/{patient_user_id}/documents",
    response_model=list[DocumentResponse],
)
def list_patient_documents(
    patient_user_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """List a patient's documents, newest first."""
    assert_patient_access(identity, patient_user_id, authorize)
    return [DocumentResponse.from_row(d) for d in list_documents(db, patient_user_id)]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document_detail(
    document_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    doc = get_document(db, document_id)
    assert_patient_access(identity, doc.patient_user_id, authorize)
    return DocumentResponse.from_row(doc)


@router.get("/documents/{document_id}/download")
def download_document(
    document_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Download the originally uploaded file."""
    doc = get_document(db, document_id)
    assert_patient_access(identity, doc.patient_user_id, authorize)

    if not doc.storage_key:
        raise HTTPException(status_code=404, detail="Document file missing: no storage key")
    try:
        file_path = get_blob_path(doc.storage_key)
    except ValueError:
        raise HTTPException(status_code=404, detail="Document file missing: invalid storage key")
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="Document file missing on disk")

    return FileResponse(
        path=str(file_path),
        filename=doc.original_file_name or document_id,
        media_type=doc.content_type,
    )


@router.post("/documents/{document_id}/parse", response_model=ParseResponse)
def parse_document(
    document_id: str,
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
    extractor: ExtractionService = Depends(get_extraction_service),
):
    """Run extraction on an uploaded (or previously failed) document."""
    doc = load_document(document_id)
    assert_patient_access(identity, doc.patient_user_id, authorize)

    outcome = request_parse(document_id, extractor)
    return ParseResponse(
        document=DocumentResponse.from_row(outcome.document),
        extraction_id=outcome.extraction.id,
        created={category: len(rows) for category, rows in outcome.created.items()},
        warnings=[w.model_dump(mode="json") for w in outcome.warnings],
    )


@router.get("/documents/{document_id}/insights", response_model=InsightsResponse)
def document_insights(
    document_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """The document, its extraction, and the records that extraction produced."""
    insights = get_document_insights(db, document_id)
    assert_patient_access(identity, insights.document.patient_user_id, authorize)
    created = insights.created
    return InsightsResponse(
        document=DocumentResponse.from_row(insights.document),
        extraction=ExtractionResponse.from_row(insights.extraction) if insights.extraction else None,
        created=RecordsResponse.from_rows(
            created.vitals, created.labs, created.medications, created.conditions
        ),
    )
