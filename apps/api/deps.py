"""
Service dependencies for the API routes.

Tests replace these with deterministic fakes via app.dependency_overrides.
"""
from __future__ import annotations

from functools import lru_cache

from apps.worker.lib.openai_services import OpenAIExtractionService, OpenAISummarizationService
from packages.shared.services import ExtractionService, SummarizationService


@lru_cache(maxsize=1)
def get_extraction_service() -> ExtractionService:
    return OpenAIExtractionService()


@lru_cache(maxsize=1)
def get_summarization_service() -> SummarizationService:
    return OpenAISummarizationService()
