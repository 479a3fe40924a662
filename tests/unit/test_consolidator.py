"""
Unit tests for extraction payload consolidation.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from apps.worker.steps.step03_consolidate import (
    coerce_bool,
    coerce_int,
    coerce_text,
    consolidate,
    parse_timestamp,
)
from packages.shared.models import RecordCategory

TS = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_full_payload_maps_every_category():
    payload = {
        "hpi": {"historyOfPresentIllness": "Headaches"},
        "vitals": [{"systolic": 142, "diastolic": 91, "heartRate": 84, "temperatureC": 37}],
        "labs": [{"testName": "HbA1c", "valueText": "6.9", "unit": "%", "referenceRange": "4.0-5.6", "flag": "H"}],
        "medications": [{"medicationName": "Lisinopril", "dose": "10 mg", "frequency": "daily", "active": True}],
        "conditions": [{"conditionName": "Hypertension", "status": "active"}],
    }
    result = consolidate(payload, "patient-1", TS)

    assert result.patient_user_id == "patient-1"
    assert result.total_records == 4
    assert result.warnings == []
    assert result.vitals[0].systolic == 142
    assert result.vitals[0].measured_at == TS
    assert result.labs[0].flag == "H"
    assert result.medications[0].dose == "10 mg"
    assert result.conditions[0].status == "active"


def test_lab_missing_value_is_dropped_with_warning():
    payload = {"labs": [{"testName": "HbA1c"}, {"testName": "LDL", "valueText": "162"}]}
    result = consolidate(payload, "p", TS)

    assert [l.test_name for l in result.labs] == ["LDL"]
    assert result.dropped_count == 1
    warning = result.warnings[0]
    assert warning.code == "CANDIDATE_DROPPED"
    assert warning.category == RecordCategory.LABS
    assert warning.index == 0
    assert "missing valueText" in warning.message


def test_required_names_are_never_defaulted():
    payload = {
        "labs": [{"valueText": "5"}],
        "medications": [{"dose": "5 mg"}, {"medicationName": "   "}],
        "conditions": [{"status": "resolved"}],
    }
    result = consolidate(payload, "p", TS)

    assert result.total_records == 0
    assert result.dropped_count == 4
    reasons = [w.message for w in result.warnings]
    assert "labs[0] dropped: missing testName" in reasons
    assert "medications[1] dropped: missing medicationName" in reasons
    assert "conditions[0] dropped: missing conditionName" in reasons


def test_vital_without_measurements_is_dropped():
    payload = {"vitals": [{"measuredAt": "2024-03-14T08:00:00Z"}, {"heartRate": "72"}]}
    result = consolidate(payload, "p", TS)

    assert len(result.vitals) == 1
    assert result.vitals[0].heart_rate == 72
    assert result.warnings[0].message == "vitals[0] dropped: no measurements"


def test_non_object_candidates_are_dropped():
    result = consolidate({"conditions": ["asthma", {"conditionName": "Asthma"}]}, "p", TS)

    assert [c.condition_name for c in result.conditions] == ["Asthma"]
    assert result.warnings[0].message == "conditions[0] dropped: not an object"


def test_numeric_fields_coerced_leniently():
    payload = {"vitals": [{"systolic": "120", "diastolic": 80.7, "heartRate": "fast", "temperatureC": True}]}
    vital = consolidate(payload, "p", TS).vitals[0]

    assert vital.systolic == 120
    assert vital.diastolic == 80
    assert vital.heart_rate is None
    assert vital.temperature_c is None


def test_blood_pressure_string_is_split():
    vital = consolidate({"vitals": [{"bloodPressure": "130/85"}]}, "p", TS).vitals[0]
    assert (vital.systolic, vital.diastolic) == (130, 85)


def test_numeric_lab_value_rendered_as_text():
    lab = consolidate({"labs": [{"testName": "Potassium", "valueText": 4.2}]}, "p", TS).labs[0]
    assert lab.value_text == "4.2"


def test_snake_case_and_short_aliases_accepted():
    payload = {
        "labs": [{"name": "LDL", "value": 162, "units": "mg/dL"}],
        "medications": [{"medication_name": "Metformin", "dosage": "500 mg", "active": "discontinued"}],
    }
    result = consolidate(payload, "p", TS)

    assert result.labs[0].unit == "mg/dL"
    assert result.medications[0].dose == "500 mg"
    assert result.medications[0].active is False


def test_candidate_timestamps_used_when_valid():
    payload = {
        "labs": [
            {"testName": "A", "valueText": "1", "collectedAt": "2024-03-14T08:30:00Z"},
            {"testName": "B", "valueText": "2", "collectedAt": "last tuesday"},
        ]
    }
    labs = consolidate(payload, "p", TS).labs

    assert labs[0].collected_at == datetime(2024, 3, 14, 8, 30, tzinfo=timezone.utc)
    assert labs[1].collected_at == TS


def test_missing_categories_and_unknown_keys_ignored():
    result = consolidate({"allergies": [{"name": "peanut"}], "vitals": None}, "p", TS)
    assert result.total_records == 0
    assert result.warnings == []


def test_consolidate_is_deterministic():
    payload = {"labs": [{"testName": "LDL", "valueText": "162"}, {"testName": ""}]}
    assert consolidate(payload, "p", TS) == consolidate(payload, "p", TS)


def test_long_text_clipped_to_column_width():
    lab = consolidate({"labs": [{"testName": "X" * 500, "valueText": "1"}]}, "p", TS).labs[0]
    assert len(lab.test_name) == 200


def test_coercion_helpers():
    assert coerce_int("-3") == -3
    assert coerce_int(float("nan")) is None
    assert coerce_int(False) is None
    assert coerce_text("  ") is None
    assert coerce_text({"a": 1}) is None
    assert coerce_text(7) == "7"
    assert coerce_bool(None) is True
    assert coerce_bool("no") is False
    assert coerce_bool("maybe", default=False) is False


def test_parse_timestamp_converts_offsets_to_utc():
    parsed = parse_timestamp("2024-03-14T10:00:00+02:00", TS)
    assert parsed == datetime(2024, 3, 14, 8, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-14T10:00:00", TS).tzinfo == timezone.utc
    assert parse_timestamp(None, TS - timedelta(days=1)) == TS - timedelta(days=1)


def test_out_of_range_vital_value_nulled_with_warning():
    payload = {"vitals": [{"systolic": 120, "heartRate": "99999999999999999999"}]}
    result = consolidate(payload, "p", TS)

    vital = result.vitals[0]
    assert vital.systolic == 120
    assert vital.heart_rate is None
    assert result.dropped_count == 0
    assert [w.code for w in result.warnings] == ["FIELD_OUT_OF_RANGE"]
    assert result.warnings[0].category == RecordCategory.VITALS
    assert result.warnings[0].message.startswith("vitals[0] heartRate 99999999999999999999 outside 0-400")


def test_vital_with_only_out_of_range_values_is_dropped():
    payload = {"vitals": [{"systolic": 2 ** 40, "temperatureC": -5, "bloodPressure": "999/999"}]}
    result = consolidate(payload, "p", TS)

    assert result.vitals == []
    codes = [w.code for w in result.warnings]
    assert codes.count("FIELD_OUT_OF_RANGE") == 4
    assert codes[-1] == "CANDIDATE_DROPPED"
    assert result.warnings[-1].message == "vitals[0] dropped: no measurements"


def test_coerce_int_is_bounded_and_exact():
    assert coerce_int(2 ** 31 - 1) == 2 ** 31 - 1
    assert coerce_int(2 ** 31) is None
    assert coerce_int("-2147483649") is None
    assert coerce_int("99999999999999999999") is None
    assert coerce_int(1e300) is None
    assert coerce_int("2147483647") == 2147483647
    assert coerce_int("120.9") == 120


def test_null_categories_treated_as_empty():
    payload = {"vitals": None, "medications": None, "labs": [{"testName": "LDL", "valueText": "90"}]}
    result = consolidate(payload, "p", TS)

    assert [l.test_name for l in result.labs] == ["LDL"]
    assert result.vitals == []
    assert result.warnings == []
