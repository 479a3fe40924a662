"""
Contracts for the external interpretation services.

The pipeline only depends on these protocols; the OpenAI-backed
implementations live in apps.worker.lib.openai_services and tests substitute
deterministic fakes.
"""
from __future__ import annotations

from typing import Any, Protocol

from packages.shared.models import ClinicalSnapshot


class ExtractionService(Protocol):
    model: str

    def extract(self, data: bytes, content_type: str) -> dict[str, Any]:
        """
        Interpret one document and return candidate clinical facts.

        Raises UpstreamTimeout / UpstreamInvalid on failure.
        """
        ...


class SummarizationService(Protocol):
    model: str

    def summarize(self, snapshot: ClinicalSnapshot) -> dict[str, Any]:
        """
        Produce the daily narrative for a patient snapshot.

        Raises UpstreamTimeout / UpstreamInvalid on failure.
        """
        ...
