"""
OpenAI-backed extraction and summarization services.

Both clients are built with max_retries=0: retries are caller-initiated
(re-parse, regenerate with force), never hidden inside the pipeline.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any

import openai
from openai import OpenAI

from apps.worker.steps.step01_text_acquire import acquire_text
from packages.shared.errors import UpstreamInvalid, UpstreamTimeout
from packages.shared.models import ClinicalSnapshot

logger = logging.getLogger(__name__)

EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
SUMMARIZATION_MODEL = os.getenv("SUMMARIZATION_MODEL", "gpt-4o-mini")
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120"))
SUMMARIZATION_TIMEOUT_SECONDS = float(os.getenv("SUMMARIZATION_TIMEOUT_SECONDS", "90"))

EXTRACTION_PROMPT = """
You extract structured clinical facts from a patient's medical document.
Return ONLY a JSON object with these keys (omit nothing, use [] when empty):

{
  "hpi": {"historyOfPresentIllness": string|null, "symptomOnset": string|null, "symptomDuration": string|null},
  "vitals": [{"measuredAt": ISO-8601|null, "systolic": int|null, "diastolic": int|null, "heartRate": int|null, "temperatureC": int|null}],
  "labs": [{"collectedAt": ISO-8601|null, "testName": string, "valueText": string, "unit": string|null, "referenceRange": string|null, "flag": "H"|"L"|"critical"|null}],
  "medications": [{"medicationName": string, "dose": string|null, "frequency": string|null, "active": bool}],
  "conditions": [{"conditionName": string, "status": string|null}]
}

Rules:
- Only report facts stated in the document. Do not infer values.
- Convert temperatures to Celsius.
- Use the exact test and medication names from the document.
""".strip()

SUMMARY_PROMPT = """
You write a short daily health overview for a patient from their recorded data.
Return ONLY a JSON object:

{
  "overview": string,
  "insights": [string],
  "recommendations": [string],
  "redFlags": [string],
  "suggestedFollowUps": [string]
}

Be factual, reference the data given, and never diagnose. Put anything that
needs prompt medical attention in redFlags.
""".strip()


def _completion_json(client: OpenAI, model: str, system: str, user: str) -> dict[str, Any]:
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )
    except openai.APITimeoutError as exc:
        raise UpstreamTimeout("timeout") from exc
    except openai.APIError as exc:
        raise UpstreamInvalid(f"Upstream service error: {exc}") from exc

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise UpstreamInvalid("Upstream service returned an empty response")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise UpstreamInvalid(f"Upstream service returned malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise UpstreamInvalid("Upstream service returned JSON that is not an object")
    return payload


class OpenAIExtractionService:
    """Extraction capability: document bytes -> candidate clinical facts."""

    def __init__(self, client: OpenAI | None = None, model: str = EXTRACTION_MODEL):
        self.client = client or OpenAI(
            api_key=os.getenv("OPENAI_API_KEY"),
            timeout=EXTRACTION_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = model

    def extract(self, data: bytes, content_type: str) -> dict[str, Any]:
        text, warnings = acquire_text(data, content_type)
        for w in warnings:
            logger.info(f"Text acquisition: {w.message}")
        user = f"DOCUMENT ({content_type}):\n\n{text}"
        return _completion_json(self.client, self.model, EXTRACTION_PROMPT, user)


class OpenAISummarizationService:
    """Summarization capability: clinical snapshot -> daily narrative."""

    def __init__(self, client: OpenAI | None = None, model: str = SUMMARIZATION_MODEL):
        self.client = client or OpenAI(
            api_key=os.getenv("OPENAI_API_KEY"),
            timeout=SUMMARIZATION_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = model

    def summarize(self, snapshot: ClinicalSnapshot) -> dict[str, Any]:
        user = "PATIENT DATA:\n" + snapshot.model_dump_json(indent=2, exclude_none=True)
        return _completion_json(self.client, self.model, SUMMARY_PROMPT, user)
