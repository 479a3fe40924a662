"""
SQLAlchemy ORM models for medichat persistence.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship

def _uuid():
    return uuid.uuid4().hex

def utcnow():
    return datetime.now(dt_timezone.utc)

def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc)

class Base(DeclarativeBase):
    pass


class PatientProfile(Base):
    __tablename__ = "patient_profiles"

    patient_user_id = Column(String(120), primary_key=True)
    age_years = Column(Integer, nullable=True)
    gender = Column(String(20), default="unknown", nullable=False)
    history_of_present_illness = Column(Text, nullable=True)
    symptom_onset = Column(String(200), nullable=True)
    symptom_duration = Column(String(200), nullable=True)
    smoking_status = Column(String(20), default="unknown", nullable=False)
    alcohol_consumption = Column(String(20), default="unknown", nullable=False)
    physical_activity_level = Column(String(20), default="unknown", nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    uploaded_by_user_id = Column(String(120), nullable=False)
    original_file_name = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    storage_bucket = Column(String(100), nullable=True)
    storage_key = Column(String(500), nullable=True)
    status = Column(String(20), default="uploaded", nullable=False)  # uploaded | parsed | error
    parsed_at = Column(DateTime, nullable=True)
    parse_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # In-flight parse claim (compare-and-swap guard)
    parse_attempt_id = Column(String(64), nullable=True)
    parse_claimed_at = Column(DateTime, nullable=True)

    extraction = relationship("Extraction", back_populates="document", uselist=False)


class Extraction(Base):
    __tablename__ = "extractions"

    id = Column(String(120), primary_key=True, default=_uuid)
    document_id = Column(String(120), ForeignKey("documents.id"), nullable=False, unique=True)
    model = Column(String(120), nullable=False)
    extracted_json = Column(JSON, nullable=False)
    warnings_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    document = relationship("Document", back_populates="extraction")


class Vital(Base):
    __tablename__ = "vitals"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    measured_at = Column(DateTime, nullable=False, default=utcnow)
    systolic = Column(Integer, nullable=True)
    diastolic = Column(Integer, nullable=True)
    heart_rate = Column(Integer, nullable=True)
    temperature_c = Column(Integer, nullable=True)
    source_document_id = Column(String(120), ForeignKey("documents.id"), nullable=True)
    extraction_id = Column(String(120), ForeignKey("extractions.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)


class Lab(Base):
    __tablename__ = "labs"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    collected_at = Column(DateTime, nullable=False, default=utcnow)
    test_name = Column(String(200), nullable=False)
    value_text = Column(String(200), nullable=False)
    unit = Column(String(50), nullable=True)
    reference_range = Column(String(100), nullable=True)
    flag = Column(String(30), nullable=True)  # H | L | critical ...
    source_document_id = Column(String(120), ForeignKey("documents.id"), nullable=True)
    extraction_id = Column(String(120), ForeignKey("extractions.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)


class Medication(Base):
    __tablename__ = "medications"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    medication_name = Column(String(200), nullable=False)
    dose = Column(String(100), nullable=True)
    frequency = Column(String(100), nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    noted_at = Column(DateTime, nullable=False, default=utcnow)
    source_document_id = Column(String(120), ForeignKey("documents.id"), nullable=True)
    extraction_id = Column(String(120), ForeignKey("extractions.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)


class Condition(Base):
    __tablename__ = "conditions"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    condition_name = Column(String(200), nullable=False)
    status = Column(String(50), nullable=True)
    noted_at = Column(DateTime, nullable=False, default=utcnow)
    source_document_id = Column(String(120), ForeignKey("documents.id"), nullable=True)
    extraction_id = Column(String(120), ForeignKey("extractions.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)


class DailyDashboard(Base):
    __tablename__ = "daily_dashboards"
    __table_args__ = (
        UniqueConstraint("patient_user_id", "day", "revision", name="uq_dashboard_patient_day_revision"),
    )

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_user_id = Column(String(120), nullable=False, index=True)
    day = Column(Date, nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    model = Column(String(120), nullable=False)
    dashboard_json = Column(JSON, nullable=True)
    status = Column(String(20), default="generated", nullable=False)  # generated | error
    created_at = Column(DateTime, default=utcnow)


class DashboardGenerationClaim(Base):
    """Held while a non-forced generation for (patient, day) is summarizing."""
    __tablename__ = "dashboard_generation_claims"

    patient_user_id = Column(String(120), primary_key=True)
    day = Column(Date, primary_key=True)
    token = Column(String(64), nullable=False)
    claimed_at = Column(DateTime, nullable=False, default=utcnow)
