"""
Validate upstream service payloads against the bundled JSON schemas.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema

_SCHEMA_DIR = Path(__file__).resolve().parent.parent.parent / "schemas"
EXTRACTION_SCHEMA = "extraction.schema.json"
DASHBOARD_SCHEMA = "daily-dashboard.schema.json"
_schema_cache: dict[str, dict] = {}


def _load_schema(name: str) -> dict:
    if name not in _schema_cache:
        with open(_SCHEMA_DIR / name, "r", encoding="utf-8") as f:
            _schema_cache[name] = json.load(f)
    return _schema_cache[name]


def _validate(schema_name: str, data: Any) -> tuple[bool, list[str]]:
    schema = _load_schema(schema_name)
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    messages = [
        f"{'→'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}"
        for e in errors
    ]
    return (len(messages) == 0, messages)


def validate_extraction_payload(data: Any) -> tuple[bool, list[str]]:
    """
    Validate the structural shape of an extraction payload.
    Returns (is_valid, list_of_error_messages).
    """
    return _validate(EXTRACTION_SCHEMA, data)


def validate_dashboard_payload(data: Any) -> tuple[bool, list[str]]:
    """Validate a summarization response. Returns (is_valid, list_of_error_messages)."""
    return _validate(DASHBOARD_SCHEMA, data)
