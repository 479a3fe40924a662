"""
Unit tests for schema validator.
"""
from __future__ import annotations

from packages.shared.schema_validator import validate_dashboard_payload, validate_extraction_payload


def test_validate_extraction_valid():
    """A full payload with every category passes."""
    data = {
        "hpi": {"historyOfPresentIllness": "Headaches for two weeks", "symptomOnset": None},
        "vitals": [{"systolic": 120}],
        "labs": [{"testName": "LDL", "valueText": "162"}],
        "medications": [],
        "conditions": [],
    }
    is_valid, errors = validate_extraction_payload(data)
    assert is_valid, f"Validation failed with errors: {errors}"
    assert errors == []


def test_validate_extraction_empty_object_is_valid():
    is_valid, _ = validate_extraction_payload({})
    assert is_valid


def test_validate_extraction_allows_unknown_keys_and_null_hpi():
    is_valid, errors = validate_extraction_payload({"hpi": None, "allergies": ["peanut"]})
    assert is_valid, errors


def test_validate_extraction_rejects_non_object():
    is_valid, errors = validate_extraction_payload(["vitals"])
    assert not is_valid
    assert errors[0].startswith("<root>:")


def test_validate_extraction_rejects_non_array_category():
    is_valid, errors = validate_extraction_payload({"labs": {"testName": "LDL"}})
    assert not is_valid
    assert any(e.startswith("labs:") for e in errors)


def test_validate_dashboard_valid():
    data = {
        "overview": "Blood pressure remains elevated.",
        "insights": ["Two high readings this week"],
        "recommendations": [],
        "redFlags": [],
        "suggestedFollowUps": ["Recheck BP in 2 weeks"],
    }
    is_valid, errors = validate_dashboard_payload(data)
    assert is_valid, errors


def test_validate_dashboard_requires_overview():
    is_valid, errors = validate_dashboard_payload({"insights": []})
    assert not is_valid
    assert any("overview" in e for e in errors)


def test_validate_dashboard_rejects_non_string_items():
    is_valid, errors = validate_dashboard_payload({"overview": "ok", "redFlags": [{"text": "x"}]})
    assert not is_valid
    assert any(e.startswith("redFlags→0") for e in errors)


def test_validate_extraction_allows_null_categories():
    is_valid, errors = validate_extraction_payload(
        {"vitals": None, "labs": [{"testName": "LDL", "valueText": "90"}], "medications": None, "conditions": None}
    )
    assert is_valid, errors
