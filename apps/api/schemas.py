"""
Request/response bodies for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from packages.db.models import Condition, DailyDashboard, Document, Extraction, Lab, Medication, Vital, ensure_utc


def to_iso(value) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentResponse(ApiModel):
    id: str
    patient_user_id: str
    uploaded_by_user_id: str
    original_file_name: str
    content_type: str
    size_bytes: int
    status: str
    parsed_at: Optional[str]
    parse_error: Optional[str]
    created_at: str

    @classmethod
    def from_row(cls, doc: Document) -> "DocumentResponse":
        return cls(
            id=doc.id,
            patient_user_id=doc.patient_user_id,
            uploaded_by_user_id=doc.uploaded_by_user_id,
            original_file_name=doc.original_file_name,
            content_type=doc.content_type,
            size_bytes=doc.size_bytes,
            status=doc.status,
            parsed_at=to_iso(doc.parsed_at),
            parse_error=doc.parse_error,
            created_at=to_iso(doc.created_at),
        )


class VitalResponse(ApiModel):
    id: str
    measured_at: str
    systolic: Optional[int]
    diastolic: Optional[int]
    heart_rate: Optional[int]
    temperature_c: Optional[int]
    source_document_id: Optional[str]

    @classmethod
    def from_row(cls, row: Vital) -> "VitalResponse":
        return cls(
            id=row.id,
            measured_at=to_iso(row.measured_at),
            systolic=row.systolic,
            diastolic=row.diastolic,
            heart_rate=row.heart_rate,
            temperature_c=row.temperature_c,
            source_document_id=row.source_document_id,
        )


class LabResponse(ApiModel):
    id: str
    collected_at: str
    test_name: str
    value_text: str
    unit: Optional[str]
    reference_range: Optional[str]
    flag: Optional[str]
    source_document_id: Optional[str]

    @classmethod
    def from_row(cls, row: Lab) -> "LabResponse":
        return cls(
            id=row.id,
            collected_at=to_iso(row.collected_at),
            test_name=row.test_name,
            value_text=row.value_text,
            unit=row.unit,
            reference_range=row.reference_range,
            flag=row.flag,
            source_document_id=row.source_document_id,
        )


class MedicationResponse(ApiModel):
    id: str
    medication_name: str
    dose: Optional[str]
    frequency: Optional[str]
    active: bool
    noted_at: str
    source_document_id: Optional[str]

    @classmethod
    def from_row(cls, row: Medication) -> "MedicationResponse":
        return cls(
            id=row.id,
            medication_name=row.medication_name,
            dose=row.dose,
            frequency=row.frequency,
            active=row.active,
            noted_at=to_iso(row.noted_at),
            source_document_id=row.source_document_id,
        )


class ConditionResponse(ApiModel):
    id: str
    condition_name: str
    status: Optional[str]
    noted_at: str
    source_document_id: Optional[str]

    @classmethod
    def from_row(cls, row: Condition) -> "ConditionResponse":
        return cls(
            id=row.id,
            condition_name=row.condition_name,
            status=row.status,
            noted_at=to_iso(row.noted_at),
            source_document_id=row.source_document_id,
        )


class RecordsResponse(ApiModel):
    vitals: list[VitalResponse] = Field(default_factory=list)
    labs: list[LabResponse] = Field(default_factory=list)
    medications: list[MedicationResponse] = Field(default_factory=list)
    conditions: list[ConditionResponse] = Field(default_factory=list)

    @classmethod
    def from_rows(cls, vitals, labs, medications, conditions) -> "RecordsResponse":
        return cls(
            vitals=[VitalResponse.from_row(r) for r in vitals],
            labs=[LabResponse.from_row(r) for r in labs],
            medications=[MedicationResponse.from_row(r) for r in medications],
            conditions=[ConditionResponse.from_row(r) for r in conditions],
        )


class ExtractionResponse(ApiModel):
    id: str
    model: str
    extracted_json: dict[str, Any]
    warnings: list[dict[str, Any]]
    created_at: str

    @classmethod
    def from_row(cls, row: Extraction) -> "ExtractionResponse":
        return cls(
            id=row.id,
            model=row.model,
            extracted_json=row.extracted_json or {},
            warnings=row.warnings_json or [],
            created_at=to_iso(row.created_at),
        )


class DashboardResponse(ApiModel):
    id: str
    patient_user_id: str
    day: str
    revision: int
    model: str
    status: str
    dashboard_json: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: DailyDashboard) -> "DashboardResponse":
        return cls(
            id=row.id,
            patient_user_id=row.patient_user_id,
            day=row.day.isoformat(),
            revision=row.revision,
            model=row.model,
            status=row.status,
            dashboard_json=row.dashboard_json or {},
            created_at=to_iso(row.created_at),
        )
