"""
Read-side projections for presentation collaborators.

Nothing here writes. Every query is scoped by the requested patient or
document; authorization happens before these are reached.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from packages.db.models import (
    Condition,
    DailyDashboard,
    Document,
    Extraction,
    Lab,
    Medication,
    PatientProfile,
    Vital,
)
from packages.shared.errors import NotFound
from packages.shared.models import DashboardStatus


@dataclass
class CreatedRecords:
    vitals: list[Vital] = field(default_factory=list)
    labs: list[Lab] = field(default_factory=list)
    medications: list[Medication] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class DocumentInsights:
    document: Document
    extraction: Optional[Extraction]
    created: CreatedRecords


@dataclass
class RecordCounts:
    vitals: int = 0
    labs: int = 0
    medications: int = 0
    conditions: int = 0
    flagged_labs: int = 0


@dataclass
class PatientOverview:
    patient_user_id: str
    day: date
    dashboard: Optional[DailyDashboard]
    recent_documents: list[Document]
    counts: RecordCounts


def get_document(session: Session, document_id: str) -> Document:
    doc = session.query(Document).filter_by(id=document_id).first()
    if not doc:
        raise NotFound(f"Document {document_id} not found")
    return doc


def list_documents(session: Session, patient_user_id: str, limit: int | None = None) -> list[Document]:
    query = (
        session.query(Document)
        .filter_by(patient_user_id=patient_user_id)
        .order_by(Document.created_at.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def latest_extraction(session: Session, document_id: str) -> Optional[Extraction]:
    return (
        session.query(Extraction)
        .filter_by(document_id=document_id)
        .order_by(Extraction.created_at.desc())
        .first()
    )


def get_document_insights(session: Session, document_id: str) -> DocumentInsights:
    """Document, its latest extraction, and the records that extraction created."""
    doc = get_document(session, document_id)
    extraction = latest_extraction(session, document_id)
    created = CreatedRecords()
    if extraction is not None:
        scope = {"extraction_id": extraction.id, "patient_user_id": doc.patient_user_id}
        created.vitals = session.query(Vital).filter_by(**scope).order_by(Vital.measured_at).all()
        created.labs = session.query(Lab).filter_by(**scope).order_by(Lab.collected_at).all()
        created.medications = session.query(Medication).filter_by(**scope).order_by(Medication.noted_at).all()
        created.conditions = session.query(Condition).filter_by(**scope).order_by(Condition.noted_at).all()
    return DocumentInsights(document=doc, extraction=extraction, created=created)


def latest_dashboard(session: Session, patient_user_id: str, day: date) -> Optional[DailyDashboard]:
    """The authoritative dashboard for (patient, day): highest revision wins."""
    return (
        session.query(DailyDashboard)
        .filter_by(patient_user_id=patient_user_id, day=day, status=DashboardStatus.GENERATED.value)
        .order_by(DailyDashboard.revision.desc(), DailyDashboard.created_at.desc())
        .first()
    )


def get_profile(session: Session, patient_user_id: str) -> Optional[PatientProfile]:
    return session.query(PatientProfile).filter_by(patient_user_id=patient_user_id).first()


def count_records(session: Session, patient_user_id: str) -> RecordCounts:
    def _count(model) -> int:
        return (
            session.query(func.count(model.id))
            .filter(model.patient_user_id == patient_user_id)
            .scalar()
        ) or 0

    flagged = (
        session.query(func.count(Lab.id))
        .filter(Lab.patient_user_id == patient_user_id)
        .filter(Lab.flag.isnot(None))
        .filter(Lab.flag != "")
        .scalar()
    ) or 0

    return RecordCounts(
        vitals=_count(Vital),
        labs=_count(Lab),
        medications=_count(Medication),
        conditions=_count(Condition),
        flagged_labs=flagged,
    )


def list_patient_records(session: Session, patient_user_id: str, limit: int = 50) -> CreatedRecords:
    """Most recent records of each category, newest first."""
    return CreatedRecords(
        vitals=(
            session.query(Vital).filter_by(patient_user_id=patient_user_id)
            .order_by(Vital.measured_at.desc()).limit(limit).all()
        ),
        labs=(
            session.query(Lab).filter_by(patient_user_id=patient_user_id)
            .order_by(Lab.collected_at.desc()).limit(limit).all()
        ),
        medications=(
            session.query(Medication).filter_by(patient_user_id=patient_user_id)
            .order_by(Medication.noted_at.desc()).limit(limit).all()
        ),
        conditions=(
            session.query(Condition).filter_by(patient_user_id=patient_user_id)
            .order_by(Condition.noted_at.desc()).limit(limit).all()
        ),
    )


def get_patient_overview(
    session: Session,
    patient_user_id: str,
    day: date,
    recent_limit: int = 5,
) -> PatientOverview:
    return PatientOverview(
        patient_user_id=patient_user_id,
        day=day,
        dashboard=latest_dashboard(session, patient_user_id, day),
        recent_documents=list_documents(session, patient_user_id, limit=recent_limit),
        counts=count_records(session, patient_user_id),
    )
