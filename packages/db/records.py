"""
Append helpers for clinical records.

Extraction and manual entry share these so both paths produce identical rows;
records are never updated once written. Profiles are upserted.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from packages.db.models import Condition, Lab, Medication, PatientProfile, Vital, utcnow
from packages.shared.models import (
    ConditionRecord,
    LabRecord,
    MedicationRecord,
    PatientProfileData,
    VitalRecord,
)


def add_vital(
    session: Session,
    patient_user_id: str,
    record: VitalRecord,
    source_document_id: Optional[str] = None,
    extraction_id: Optional[str] = None,
) -> Vital:
    row = Vital(
        patient_user_id=patient_user_id,
        measured_at=record.measured_at,
        systolic=record.systolic,
        diastolic=record.diastolic,
        heart_rate=record.heart_rate,
        temperature_c=record.temperature_c,
        source_document_id=source_document_id,
        extraction_id=extraction_id,
    )
    session.add(row)
    return row


def add_lab(
    session: Session,
    patient_user_id: str,
    record: LabRecord,
    source_document_id: Optional[str] = None,
    extraction_id: Optional[str] = None,
) -> Lab:
    row = Lab(
        patient_user_id=patient_user_id,
        collected_at=record.collected_at,
        test_name=record.test_name,
        value_text=record.value_text,
        unit=record.unit,
        reference_range=record.reference_range,
        flag=record.flag,
        source_document_id=source_document_id,
        extraction_id=extraction_id,
    )
    session.add(row)
    return row


def add_medication(
    session: Session,
    patient_user_id: str,
    record: MedicationRecord,
    source_document_id: Optional[str] = None,
    extraction_id: Optional[str] = None,
) -> Medication:
    row = Medication(
        patient_user_id=patient_user_id,
        medication_name=record.medication_name,
        dose=record.dose,
        frequency=record.frequency,
        active=record.active,
        noted_at=record.noted_at,
        source_document_id=source_document_id,
        extraction_id=extraction_id,
    )
    session.add(row)
    return row


def add_condition(
    session: Session,
    patient_user_id: str,
    record: ConditionRecord,
    source_document_id: Optional[str] = None,
    extraction_id: Optional[str] = None,
) -> Condition:
    row = Condition(
        patient_user_id=patient_user_id,
        condition_name=record.condition_name,
        status=record.status,
        noted_at=record.noted_at,
        source_document_id=source_document_id,
        extraction_id=extraction_id,
    )
    session.add(row)
    return row


def upsert_profile(session: Session, patient_user_id: str, data: PatientProfileData) -> PatientProfile:
    """Create or replace the patient's profile. The profile is the one mutable record."""
    row = session.query(PatientProfile).filter_by(patient_user_id=patient_user_id).first()
    if row is None:
        row = PatientProfile(patient_user_id=patient_user_id)
        session.add(row)
    for name, value in data.model_dump(by_alias=False).items():
        setattr(row, name, value)
    row.updated_at = utcnow()
    session.flush()
    return row
