from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    ActivityLevel,
    AlcoholConsumption,
    Gender,
    RecordCategory,
    SmokingStatus,
)


class Warning(BaseModel):
    code: str
    message: str
    category: Optional[RecordCategory] = None
    index: Optional[int] = None
    document_id: Optional[str] = None


class VitalRecord(BaseModel):
    measured_at: datetime
    systolic: Optional[int] = None
    diastolic: Optional[int] = None
    heart_rate: Optional[int] = None
    temperature_c: Optional[int] = None

    def has_measurement(self) -> bool:
        return any(
            v is not None
            for v in (self.systolic, self.diastolic, self.heart_rate, self.temperature_c)
        )


class LabRecord(BaseModel):
    collected_at: datetime
    test_name: str = Field(min_length=1)
    value_text: str = Field(min_length=1)
    unit: Optional[str] = None
    reference_range: Optional[str] = None
    flag: Optional[str] = None


class MedicationRecord(BaseModel):
    medication_name: str = Field(min_length=1)
    dose: Optional[str] = None
    frequency: Optional[str] = None
    active: bool = True
    noted_at: datetime


class ConditionRecord(BaseModel):
    condition_name: str = Field(min_length=1)
    status: Optional[str] = None
    noted_at: datetime


class ConsolidationResult(BaseModel):
    """Typed records produced from one extraction payload, plus drop warnings."""
    patient_user_id: str
    vitals: list[VitalRecord] = Field(default_factory=list)
    labs: list[LabRecord] = Field(default_factory=list)
    medications: list[MedicationRecord] = Field(default_factory=list)
    conditions: list[ConditionRecord] = Field(default_factory=list)
    warnings: list[Warning] = Field(default_factory=list)

    @property
    def dropped_count(self) -> int:
        return sum(1 for w in self.warnings if w.code == "CANDIDATE_DROPPED")

    @property
    def total_records(self) -> int:
        return len(self.vitals) + len(self.labs) + len(self.medications) + len(self.conditions)


class PatientProfileData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    age_years: Optional[int] = Field(default=None, ge=0, le=150, alias="ageYears")
    gender: Gender = Gender.UNKNOWN
    history_of_present_illness: Optional[str] = Field(default=None, alias="historyOfPresentIllness")
    symptom_onset: Optional[str] = Field(default=None, alias="symptomOnset")
    symptom_duration: Optional[str] = Field(default=None, alias="symptomDuration")
    smoking_status: SmokingStatus = Field(default=SmokingStatus.UNKNOWN, alias="smokingStatus")
    alcohol_consumption: AlcoholConsumption = Field(default=AlcoholConsumption.UNKNOWN, alias="alcoholConsumption")
    physical_activity_level: ActivityLevel = Field(default=ActivityLevel.UNKNOWN, alias="physicalActivityLevel")


class ClinicalSnapshot(BaseModel):
    """Read-only view of a patient's data handed to the summarization service."""
    patient_user_id: str
    day: date
    profile: Optional[PatientProfileData] = None
    vitals: list[VitalRecord] = Field(default_factory=list)
    labs: list[LabRecord] = Field(default_factory=list)
    medications: list[MedicationRecord] = Field(default_factory=list)
    conditions: list[ConditionRecord] = Field(default_factory=list)


class DashboardContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overview: str = ""
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list, alias="redFlags")
    suggested_follow_ups: list[str] = Field(default_factory=list, alias="suggestedFollowUps")
