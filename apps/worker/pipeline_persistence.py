"""
Persistence helpers for document parse attempts.

All state changes on a Document go through conditional UPDATEs keyed on the
parse claim token, so a caller that lost its claim can never overwrite the
winner's result.
"""
from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from packages.db.database import get_session
from packages.db.models import Document, Extraction, utcnow
from packages.db.records import add_condition, add_lab, add_medication, add_vital
from packages.shared.errors import AlreadyParsed, NotFound, ParseInProgress, PersistenceConflict
from packages.shared.models import ConsolidationResult, DocumentStatus, Warning

logger = logging.getLogger(__name__)

PARSE_CLAIM_TTL_SECONDS = int(os.getenv("PARSE_CLAIM_TTL_SECONDS", "900"))


@dataclass
class ParseClaim:
    token: str
    document: Document


@dataclass
class ParseOutcome:
    document: Document
    extraction: Extraction
    created: dict[str, list] = field(default_factory=dict)
    warnings: list[Warning] = field(default_factory=list)


def claim_document_parse(document_id: str) -> ParseClaim:
    """
    Atomically take the parse claim for a document.

    Raises NotFound, AlreadyParsed, or ParseInProgress when another caller
    holds a live claim.
    """
    with get_session() as session:
        doc = session.query(Document).filter_by(id=document_id).first()
        if not doc:
            raise NotFound(f"Document {document_id} not found")
        if doc.status == DocumentStatus.PARSED.value:
            raise AlreadyParsed(f"Document {document_id} is already parsed")

        stale_cutoff = utcnow() - timedelta(seconds=PARSE_CLAIM_TTL_SECONDS)
        token = uuid.uuid4().hex
        rows_updated = (
            session.query(Document)
            .filter(Document.id == document_id)
            .filter(Document.status != DocumentStatus.PARSED.value)
            .filter(or_(
                Document.parse_attempt_id.is_(None),
                Document.parse_claimed_at < stale_cutoff,
            ))
            .update({
                "parse_attempt_id": token,
                "parse_claimed_at": utcnow(),
            }, synchronize_session=False)
        )

        if rows_updated != 1:
            # Lost the race: someone else claimed or finished it
            session.expire(doc)
            if doc.status == DocumentStatus.PARSED.value:
                raise AlreadyParsed(f"Document {document_id} is already parsed")
            raise ParseInProgress(f"Document {document_id} already has a parse in progress")

        if doc.parse_attempt_id:
            logger.warning(f"[{document_id}] Reclaimed stale parse claim {doc.parse_attempt_id}")

    return ParseClaim(token=token, document=doc)


def persist_parse_success(
    document_id: str,
    token: str,
    model: str,
    payload: dict,
    result: ConsolidationResult,
    parsed_at: datetime,
) -> ParseOutcome:
    """
    In one transaction: flip the document to parsed, insert the Extraction and
    every consolidated record. Raises PersistenceConflict if the claim was lost.
    """
    with get_session() as session:
        rows_updated = (
            session.query(Document)
            .filter(Document.id == document_id)
            .filter(Document.parse_attempt_id == token)
            .filter(Document.status != DocumentStatus.PARSED.value)
            .update({
                "status": DocumentStatus.PARSED.value,
                "parsed_at": parsed_at,
                "parse_error": None,
                "parse_attempt_id": None,
                "parse_claimed_at": None,
            }, synchronize_session=False)
        )
        if rows_updated != 1:
            raise PersistenceConflict(f"Document {document_id}: parse claim {token} was lost before commit")

        extraction = Extraction(
            document_id=document_id,
            model=model,
            extracted_json=payload,
            warnings_json=[w.model_dump(mode="json") for w in result.warnings],
            created_at=parsed_at,
        )
        session.add(extraction)
        try:
            session.flush()
        except IntegrityError as exc:
            raise PersistenceConflict(f"Document {document_id} already has an extraction") from exc

        patient = result.patient_user_id
        provenance = {"source_document_id": document_id, "extraction_id": extraction.id}
        created = {
            "vitals": [add_vital(session, patient, r, **provenance) for r in result.vitals],
            "labs": [add_lab(session, patient, r, **provenance) for r in result.labs],
            "medications": [add_medication(session, patient, r, **provenance) for r in result.medications],
            "conditions": [add_condition(session, patient, r, **provenance) for r in result.conditions],
        }
        session.flush()

        doc = session.query(Document).filter_by(id=document_id).one()
        session.refresh(doc)

    return ParseOutcome(document=doc, extraction=extraction, created=created, warnings=list(result.warnings))


def persist_parse_failure(document_id: str, token: str, message: str) -> Document | None:
    """
    Move a claimed document to error. Returns the updated document, or None if
    the claim was already lost (the winner's state is left untouched).
    """
    with get_session() as session:
        rows_updated = (
            session.query(Document)
            .filter(Document.id == document_id)
            .filter(Document.parse_attempt_id == token)
            .filter(Document.status != DocumentStatus.PARSED.value)
            .update({
                "status": DocumentStatus.ERROR.value,
                "parsed_at": None,
                "parse_error": message[:2000],
                "parse_attempt_id": None,
                "parse_claimed_at": None,
            }, synchronize_session=False)
        )
        if rows_updated != 1:
            logger.warning(f"[{document_id}] Parse claim {token} lost; not recording failure")
            return None
        return session.query(Document).filter_by(id=document_id).one()


def load_document(document_id: str) -> Document:
    with get_session() as session:
        doc = session.query(Document).filter_by(id=document_id).first()
        if not doc:
            raise NotFound(f"Document {document_id} not found")
        return doc


def refresh_claim(document_id: str, token: str) -> str:
    """
    Token to use for a commit retry: ours if we still hold the claim,
    otherwise a fresh claim (which raises if someone else has it or won).
    """
    with get_session() as session:
        holder = (
            session.query(Document.parse_attempt_id)
            .filter(Document.id == document_id)
            .scalar()
        )
    if holder == token:
        return token
    return claim_document_parse(document_id).token
