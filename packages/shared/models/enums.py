from enum import Enum


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    PARSED = "parsed"
    ERROR = "error"


class DashboardStatus(str, Enum):
    GENERATED = "generated"
    ERROR = "error"


class RecordCategory(str, Enum):
    VITALS = "vitals"
    LABS = "labs"
    MEDICATIONS = "medications"
    CONDITIONS = "conditions"


class Gender(str, Enum):
    FEMALE = "female"
    MALE = "male"
    NONBINARY = "nonbinary"
    OTHER = "other"
    UNKNOWN = "unknown"


class SmokingStatus(str, Enum):
    NEVER = "never"
    FORMER = "former"
    CURRENT = "current"
    UNKNOWN = "unknown"


class AlcoholConsumption(str, Enum):
    NONE = "none"
    OCCASIONAL = "occasional"
    MODERATE = "moderate"
    HEAVY = "heavy"
    UNKNOWN = "unknown"


class ActivityLevel(str, Enum):
    SEDENTARY = "sedentary"
    LIGHT = "light"
    MODERATE = "moderate"
    HIGH = "high"
    UNKNOWN = "unknown"
