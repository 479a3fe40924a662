"""
Document lifecycle: registration and the parse pipeline.

    uploaded ──parse ok──▶ parsed
        │                    ▲
        └──parse failed──▶ error ──retry──┘

A parse attempt holds a claim on the document for its whole duration; the
claim is released by the final transition (parsed or error).
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from packages.db.database import get_session
from packages.db.models import Document, utcnow
from packages.shared.errors import DocumentUnreadable, PersistenceConflict, PipelineError
from packages.shared.models import DocumentStatus
from packages.shared.services import ExtractionService
from packages.shared.storage import delete_blob, fetch_blob, store_blob

from apps.worker.pipeline_persistence import (
    ParseOutcome,
    claim_document_parse,
    persist_parse_failure,
    persist_parse_success,
    refresh_claim,
)
from apps.worker.steps.step00_validate import normalize_content_type, validate_document
from apps.worker.steps.step02_extract import run_extraction
from apps.worker.steps.step03_consolidate import consolidate

logger = logging.getLogger(__name__)


def register_uploaded_document(
    patient_user_id: str,
    uploader_id: str,
    file_name: str,
    content_type: str,
    size_bytes: int,
    blob_ref: tuple[str, str],
    document_id: Optional[str] = None,
) -> Document:
    """Record a document whose bytes are already in the blob store."""
    bucket, key = blob_ref
    with get_session() as session:
        doc = Document(
            id=document_id or uuid.uuid4().hex,
            patient_user_id=patient_user_id,
            uploaded_by_user_id=uploader_id,
            original_file_name=file_name,
            content_type=normalize_content_type(content_type),
            size_bytes=size_bytes,
            storage_bucket=bucket,
            storage_key=key,
            status=DocumentStatus.UPLOADED.value,
        )
        session.add(doc)
        session.flush()

    logger.info(
        f"[{doc.id}] Registered upload {file_name!r} ({size_bytes} bytes) "
        f"for patient {patient_user_id} by {uploader_id}"
    )
    return doc


def ingest_upload(
    patient_user_id: str,
    uploader_id: str,
    file_name: str,
    content_type: str,
    data: bytes,
) -> Document:
    """Store the bytes, then register the document. A failed registration removes the blob."""
    document_id = uuid.uuid4().hex
    blob_ref = store_blob(document_id, data)
    try:
        return register_uploaded_document(
            patient_user_id=patient_user_id,
            uploader_id=uploader_id,
            file_name=file_name,
            content_type=content_type,
            size_bytes=len(data),
            blob_ref=blob_ref,
            document_id=document_id,
        )
    except Exception:
        logger.error(f"[{document_id}] Registration failed; removing stored blob {blob_ref[1]}")
        delete_blob(blob_ref[1])
        raise


def request_parse(
    document_id: str,
    extractor: ExtractionService,
    timeout_seconds: float | None = None,
) -> ParseOutcome:
    """
    Run one parse attempt for a document.

    On success the document is parsed and the Extraction plus all consolidated
    records are committed together. On failure the document moves to error
    with a readable parse_error and the original exception is re-raised.

    Raises:
        NotFound, AlreadyParsed, ParseInProgress, DocumentUnreadable,
        ExtractionTimeout, ExtractionInvalid, PersistenceConflict
    """
    start_time = time.time()
    claim = claim_document_parse(document_id)
    doc = claim.document
    logger.info(f"[{document_id}] Parse started (claim {claim.token[:8]}, previous status {doc.status})")

    try:
        # ── Step 0: Validate ──────────────────────────────────────────
        validate_document(doc)

        # ── Step 1: Fetch bytes ───────────────────────────────────────
        try:
            data = fetch_blob(doc.storage_key)
        except (FileNotFoundError, ValueError) as exc:
            raise DocumentUnreadable(f"Stored file for document {document_id} is missing") from exc

        # ── Step 2: Extraction service ────────────────────────────────
        logger.info(f"[{document_id}] Step 2: Extraction via {extractor.model}")
        payload = run_extraction(extractor, data, doc.content_type, document_id, timeout_seconds)
        extracted_at = utcnow()

        # ── Step 3: Consolidate ───────────────────────────────────────
        result = consolidate(payload, doc.patient_user_id, extracted_at)
        for warning in result.warnings:
            warning.document_id = document_id
            logger.warning(f"[{document_id}] {warning.message}")

    except PipelineError as exc:
        logger.error(f"[{document_id}] Parse failed: {exc.message}")
        persist_parse_failure(document_id, claim.token, exc.message)
        raise
    except Exception as exc:
        logger.exception(f"[{document_id}] Parse failed unexpectedly: {exc}")
        persist_parse_failure(document_id, claim.token, str(exc) or exc.__class__.__name__)
        raise

    # ── Step 4: Persist atomically ────────────────────────────────────
    token = claim.token
    try:
        try:
            outcome = persist_parse_success(
                document_id, token, extractor.model, payload, result, extracted_at
            )
        except PersistenceConflict as exc:
            # One transparent retry with the payload already in hand; no second
            # upstream call. A winner that already parsed surfaces as AlreadyParsed.
            logger.warning(f"[{document_id}] {exc.message}; retrying commit once")
            token = refresh_claim(document_id, token)
            outcome = persist_parse_success(
                document_id, token, extractor.model, payload, result, extracted_at
            )
    except PipelineError as exc:
        logger.error(f"[{document_id}] Commit failed: {exc.message}")
        persist_parse_failure(document_id, token, exc.message)
        raise
    except Exception as exc:
        logger.exception(f"[{document_id}] Commit failed: {exc}")
        persist_parse_failure(document_id, token, f"Could not save extraction: {exc}")
        raise

    logger.info(
        f"[{document_id}] Parse completed in {time.time() - start_time:.2f}s: "
        f"vitals={len(result.vitals)} labs={len(result.labs)} "
        f"medications={len(result.medications)} conditions={len(result.conditions)} "
        f"dropped={result.dropped_count}"
    )
    return outcome
