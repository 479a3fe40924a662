"""
Step 3: Consolidation.
Map an extraction payload into typed clinical records.

Rules:
  - Candidates missing a required field are dropped (never defaulted) and
    reported as CANDIDATE_DROPPED warnings.
  - Numeric fields are coerced leniently: "120" -> 120, 37.6 -> 37; anything
    non-numeric becomes None.
  - Vital values outside their plausible range become None and are reported
    as FIELD_OUT_OF_RANGE warnings; the vital is dropped if nothing is left.
  - Unknown keys are ignored; a few snake_case / short aliases are accepted.
  - Candidate timestamps are used when they parse as ISO-8601, otherwise the
    extraction time is used.

The function is pure: same inputs, same output.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from packages.shared.models import (
    ConditionRecord,
    ConsolidationResult,
    LabRecord,
    MedicationRecord,
    RecordCategory,
    VitalRecord,
    Warning,
)

_NUMERIC_RE = re.compile(r"^[+-]?\d+(?:\.\d+)?$")
_BP_RE = re.compile(r"^\s*(\d{2,3})\s*/\s*(\d{2,3})\s*$")
_TRUE_WORDS = {"true", "yes", "y", "1", "active", "current", "ongoing"}
_FALSE_WORDS = {"false", "no", "n", "0", "inactive", "stopped", "discontinued", "past"}

# Column widths in packages.db.models
_MAX_NAME = 200
_MAX_VALUE = 200
_MAX_UNIT = 50
_MAX_RANGE = 100
_MAX_FLAG = 30
_MAX_DOSE = 100
_MAX_STATUS = 50

# Signed 32-bit Integer columns
_INT_MIN = -(2 ** 31)
_INT_MAX = 2 ** 31 - 1

# Same bounds as manual vital entry in apps.api.routes.patients
VITAL_RANGES: dict[str, tuple[int, int]] = {
    "systolic": (0, 400),
    "diastolic": (0, 300),
    "heartRate": (0, 400),
    "temperatureC": (0, 60),
}


def _pick(candidate: dict, *keys: str) -> Any:
    for key in keys:
        if key in candidate and candidate[key] is not None:
            return candidate[key]
    return None


def coerce_int(value: Any) -> int | None:
    """Lenient integer coercion; non-numeric or out-of-range input yields None."""
    if value is None or isinstance(value, bool):
        return None
    number: int | None = None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        number = int(value) if math.isfinite(value) else None
    elif isinstance(value, str):
        s = value.strip()
        if _NUMERIC_RE.match(s):
            number = int(Decimal(s))
    if number is None or not _INT_MIN <= number <= _INT_MAX:
        return None
    return number


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, str) and bool(_NUMERIC_RE.match(value.strip()))


def _vital_field(c: dict, field: str, keys: tuple[str, ...], notes: list[str]) -> int | None:
    raw = _pick(c, *keys)
    value = coerce_int(raw)
    low, high = VITAL_RANGES[field]
    if value is not None and low <= value <= high:
        return value
    if _is_numeric(raw):
        notes.append(f"{field} {str(raw)[:40]} outside {low}-{high}")
    return None


def coerce_text(value: Any, max_len: int | None = None) -> str | None:
    """Strings are stripped, numbers rendered; empty or structured values yield None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        return None
    if not text:
        return None
    if max_len is not None:
        text = text[:max_len]
    return text


def coerce_bool(value: Any, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return default


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return fallback
        return _as_utc(parsed)
    return fallback


def _vital(c: dict, ts: datetime, notes: list[str]) -> tuple[VitalRecord | None, str | None]:
    systolic = _vital_field(c, "systolic", ("systolic", "systolicBp", "bp_systolic"), notes)
    diastolic = _vital_field(c, "diastolic", ("diastolic", "diastolicBp", "bp_diastolic"), notes)
    if systolic is None and diastolic is None:
        bp = _pick(c, "bloodPressure", "blood_pressure", "bp")
        match = _BP_RE.match(bp) if isinstance(bp, str) else None
        if match:
            split = {"systolic": match.group(1), "diastolic": match.group(2)}
            systolic = _vital_field(split, "systolic", ("systolic",), notes)
            diastolic = _vital_field(split, "diastolic", ("diastolic",), notes)

    record = VitalRecord(
        measured_at=parse_timestamp(_pick(c, "measuredAt", "measured_at", "date"), ts),
        systolic=systolic,
        diastolic=diastolic,
        heart_rate=_vital_field(c, "heartRate", ("heartRate", "heart_rate", "pulse"), notes),
        temperature_c=_vital_field(c, "temperatureC", ("temperatureC", "temperature_c", "temperature"), notes),
    )
    if not record.has_measurement():
        return None, "no measurements"
    return record, None


def _lab(c: dict, ts: datetime, notes: list[str]) -> tuple[LabRecord | None, str | None]:
    test_name = coerce_text(_pick(c, "testName", "test_name", "name"), _MAX_NAME)
    if test_name is None:
        return None, "missing testName"
    value_text = coerce_text(_pick(c, "valueText", "value_text", "value"), _MAX_VALUE)
    if value_text is None:
        return None, "missing valueText"
    return LabRecord(
        collected_at=parse_timestamp(_pick(c, "collectedAt", "collected_at", "date"), ts),
        test_name=test_name,
        value_text=value_text,
        unit=coerce_text(_pick(c, "unit", "units"), _MAX_UNIT),
        reference_range=coerce_text(_pick(c, "referenceRange", "reference_range", "range"), _MAX_RANGE),
        flag=coerce_text(c.get("flag"), _MAX_FLAG),
    ), None


def _medication(c: dict, ts: datetime, notes: list[str]) -> tuple[MedicationRecord | None, str | None]:
    name = coerce_text(_pick(c, "medicationName", "medication_name", "name"), _MAX_NAME)
    if name is None:
        return None, "missing medicationName"
    return MedicationRecord(
        medication_name=name,
        dose=coerce_text(_pick(c, "dose", "dosage"), _MAX_DOSE),
        frequency=coerce_text(c.get("frequency"), _MAX_DOSE),
        active=coerce_bool(c.get("active"), default=True),
        noted_at=parse_timestamp(_pick(c, "notedAt", "noted_at"), ts),
    ), None


def _condition(c: dict, ts: datetime, notes: list[str]) -> tuple[ConditionRecord | None, str | None]:
    name = coerce_text(_pick(c, "conditionName", "condition_name", "name"), _MAX_NAME)
    if name is None:
        return None, "missing conditionName"
    return ConditionRecord(
        condition_name=name,
        status=coerce_text(c.get("status"), _MAX_STATUS),
        noted_at=parse_timestamp(_pick(c, "notedAt", "noted_at"), ts),
    ), None


_BUILDERS: dict[RecordCategory, Callable[[dict, datetime, list[str]], tuple[Any, str | None]]] = {
    RecordCategory.VITALS: _vital,
    RecordCategory.LABS: _lab,
    RecordCategory.MEDICATIONS: _medication,
    RecordCategory.CONDITIONS: _condition,
}


def consolidate(
    payload: dict[str, Any],
    patient_user_id: str,
    timestamp_context: datetime,
) -> ConsolidationResult:
    """
    Map *payload* into typed records for *patient_user_id*.

    Args:
        payload: Structurally valid extraction payload.
        patient_user_id: Owner of the produced records.
        timestamp_context: Extraction time; default for missing/invalid timestamps.

    Returns:
        ConsolidationResult with the records, one warning per dropped candidate
        and one per out-of-range vital value.
    """
    ts = _as_utc(timestamp_context)
    result = ConsolidationResult(patient_user_id=patient_user_id)

    for category, build in _BUILDERS.items():
        candidates = payload.get(category.value) or []
        if not isinstance(candidates, list):
            candidates = []
        accepted = getattr(result, category.value)
        for index, candidate in enumerate(candidates):
            notes: list[str] = []
            if not isinstance(candidate, dict):
                record, reason = None, "not an object"
            else:
                record, reason = build(candidate, ts, notes)
            for note in notes:
                result.warnings.append(Warning(
                    code="FIELD_OUT_OF_RANGE",
                    message=f"{category.value}[{index}] {note}",
                    category=category,
                    index=index,
                ))
            if record is None:
                result.warnings.append(Warning(
                    code="CANDIDATE_DROPPED",
                    message=f"{category.value}[{index}] dropped: {reason}",
                    category=category,
                    index=index,
                ))
                continue
            accepted.append(record)

    return result
