"""
API route: Patient profile, manual records and overview
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy.orm import Session

from apps.api.authz import (
    AccessAuthorizer,
    RequestIdentity,
    assert_patient_access,
    get_access_authorizer,
    get_request_identity,
)
from apps.api.schemas import (
    ApiModel,
    ConditionResponse,
    DashboardResponse,
    DocumentResponse,
    LabResponse,
    MedicationResponse,
    RecordsResponse,
    VitalResponse,
    to_iso,
)
from apps.worker.dashboard import current_utc_day
from packages.db.database import get_db
from packages.db.models import utcnow
from packages.db.read_model import get_patient_overview, get_profile, list_patient_records
from packages.db.records import add_condition, add_lab, add_medication, add_vital, upsert_profile
from packages.shared.models import (
    ConditionRecord,
    LabRecord,
    MedicationRecord,
    PatientProfileData,
    VitalRecord,
)

router = APIRouter(tags=["patients"])


class ProfileResponse(ApiModel):
    patient_user_id: str
    age_years: Optional[int]
    gender: str
    history_of_present_illness: Optional[str]
    symptom_onset: Optional[str]
    symptom_duration: Optional[str]
    smoking_status: str
    alcohol_consumption: str
    physical_activity_level: str
    updated_at: Optional[str]


class CreateVitalRequest(ApiModel):
    systolic: Optional[int] = Field(default=None, ge=0, le=400)
    diastolic: Optional[int] = Field(default=None, ge=0, le=300)
    heart_rate: Optional[int] = Field(default=None, ge=0, le=400)
    temperature_c: Optional[int] = Field(default=None, ge=0, le=60)


class CreateLabRequest(ApiModel):
    test_name: str = Field(min_length=1, max_length=200)
    value_text: str = Field(min_length=1, max_length=200)
    unit: Optional[str] = Field(default=None, max_length=50)
    reference_range: Optional[str] = Field(default=None, max_length=100)
    flag: Optional[str] = Field(default=None, max_length=30)


class CreateMedicationRequest(ApiModel):
    medication_name: str = Field(min_length=1, max_length=200)
    dose: Optional[str] = Field(default=None, max_length=100)
    frequency: Optional[str] = Field(default=None, max_length=100)
    active: bool = True


class CreateConditionRequest(ApiModel):
    condition_name: str = Field(min_length=1, max_length=200)
    status: Optional[str] = Field(default=None, max_length=50)


class RecordCountsResponse(ApiModel):
    vitals: int
    labs: int
    medications: int
    conditions: int
    flagged_labs: int


class OverviewResponse(ApiModel):
    patient_user_id: str
    day: str
    dashboard: Optional[DashboardResponse]
    recent_documents: list[DocumentResponse]
    counts: RecordCountsResponse


def _profile_response(row) -> ProfileResponse:
    return ProfileResponse(
        patient_user_id=row.patient_user_id,
        age_years=row.age_years,
        gender=row.gender,
        history_of_present_illness=row.history_of_present_illness,
        symptom_onset=row.symptom_onset,
        symptom_duration=row.symptom_duration,
        smoking_status=row.smoking_status,
        alcohol_consumption=row.alcohol_consumption,
        physical_activity_level=row.physical_activity_level,
        updated_at=to_iso(row.updated_at),
    )


@router.get("/patients/{patient_user_id}/profile", response_model=Optional[ProfileResponse])
def read_profile(
    patient_user_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Return the saved profile, or null if the patient never saved one."""
    assert_patient_access(identity, patient_user_id, authorize)
    row = get_profile(db, patient_user_id)
    return _profile_response(row) if row else None


@router.put("/patients/{patient_user_id}/profile", response_model=ProfileResponse)
def save_profile(
    patient_user_id: str,
    req: PatientProfileData,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    return _profile_response(upsert_profile(db, patient_user_id, req))


@router.post("/patients/{patient_user_id}/vitals", response_model=VitalResponse, status_code=201)
def create_vital(
    patient_user_id: str,
    req: CreateVitalRequest,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    record = VitalRecord(measured_at=utcnow(), **req.model_dump())
    row = add_vital(db, patient_user_id, record)
    db.flush()
    return VitalResponse.from_row(row)


@router.post("/patients/{patient_user_id}/labs", response_model=LabResponse, status_code=201)
def create_lab(
    patient_user_id: str,
    req: CreateLabRequest,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    test_name = req.test_name.strip()
    value_text = req.value_text.strip()
    if not test_name or not value_text:
        raise HTTPException(status_code=422, detail="testName and valueText are required")
    record = LabRecord(
        collected_at=utcnow(),
        test_name=test_name,
        value_text=value_text,
        unit=req.unit,
        reference_range=req.reference_range,
        flag=req.flag,
    )
    row = add_lab(db, patient_user_id, record)
    db.flush()
    return LabResponse.from_row(row)


@router.post("/patients/{patient_user_id}/medications", response_model=MedicationResponse, status_code=201)
def create_medication(
    patient_user_id: str,
    req: CreateMedicationRequest,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    name = req.medication_name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="medicationName is required")
    record = MedicationRecord(
        medication_name=name,
        dose=req.dose,
        frequency=req.frequency,
        active=req.active,
        noted_at=utcnow(),
    )
    row = add_medication(db, patient_user_id, record)
    db.flush()
    return MedicationResponse.from_row(row)


@router.post("/patients/{patient_user_id}/conditions", response_model=ConditionResponse, status_code=201)
def create_condition(
    patient_user_id: str,
    req: CreateConditionRequest,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    name = req.condition_name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="conditionName is required")
    record = ConditionRecord(condition_name=name, status=req.status, noted_at=utcnow())
    row = add_condition(db, patient_user_id, record)
    db.flush()
    return ConditionResponse.from_row(row)


@router.get("/patients/{patient_user_id}/records", response_model=RecordsResponse)
def list_records(
    patient_user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Most recent records of each category, newest first."""
    assert_patient_access(identity, patient_user_id, authorize)
    records = list_patient_records(db, patient_user_id, limit=limit)
    return RecordsResponse.from_rows(
        records.vitals, records.labs, records.medications, records.conditions
    )


@router.get("/patients/{patient_user_id}/overview", response_model=OverviewResponse)
def patient_overview(
    patient_user_id: str,
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    assert_patient_access(identity, patient_user_id, authorize)
    overview = get_patient_overview(db, patient_user_id, day or current_utc_day())
    counts = overview.counts
    return OverviewResponse(
        patient_user_id=overview.patient_user_id,
        day=overview.day.isoformat(),
        dashboard=DashboardResponse.from_row(overview.dashboard) if overview.dashboard else None,
        recent_documents=[DocumentResponse.from_row(d) for d in overview.recent_documents],
        counts=RecordCountsResponse(
            vitals=counts.vitals,
            labs=counts.labs,
            medications=counts.medications,
            conditions=counts.conditions,
            flagged_labs=counts.flagged_labs,
        ),
    )
