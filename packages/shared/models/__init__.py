from .enums import (
    ActivityLevel,
    AlcoholConsumption,
    DashboardStatus,
    DocumentStatus,
    Gender,
    RecordCategory,
    SmokingStatus,
)
from .domain import (
    ClinicalSnapshot,
    ConditionRecord,
    ConsolidationResult,
    DashboardContent,
    LabRecord,
    MedicationRecord,
    PatientProfileData,
    VitalRecord,
    Warning,
)

__all__ = [
    "ActivityLevel",
    "AlcoholConsumption",
    "ClinicalSnapshot",
    "ConditionRecord",
    "ConsolidationResult",
    "DashboardContent",
    "DashboardStatus",
    "DocumentStatus",
    "Gender",
    "LabRecord",
    "MedicationRecord",
    "PatientProfileData",
    "RecordCategory",
    "SmokingStatus",
    "VitalRecord",
    "Warning",
]
