"""
Step 2: Extraction.
Call the extraction service under a deadline, then check the payload's
structure against schemas/extraction.schema.json.
"""
from __future__ import annotations

import logging
import os
from typing import Any

from apps.worker.lib.deadline import call_with_deadline
from packages.shared.errors import ExtractionInvalid, ExtractionTimeout, UpstreamInvalid, UpstreamTimeout
from packages.shared.schema_validator import validate_extraction_payload
from packages.shared.services import ExtractionService

logger = logging.getLogger(__name__)

EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120"))


def run_extraction(
    service: ExtractionService,
    data: bytes,
    content_type: str,
    document_id: str,
    timeout_seconds: float | None = None,
) -> dict[str, Any]:
    """Return a structurally valid extraction payload or raise ExtractionTimeout / ExtractionInvalid."""
    deadline = EXTRACTION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    try:
        payload = call_with_deadline(
            service.extract, data, content_type,
            timeout=deadline,
            label=f"extract-{document_id[:8]}",
        )
    except UpstreamTimeout as exc:
        raise ExtractionTimeout("timeout") from exc
    except UpstreamInvalid as exc:
        raise ExtractionInvalid(exc.message) from exc

    is_valid, errors = validate_extraction_payload(payload)
    if not is_valid:
        logger.warning(f"[{document_id}] Extraction payload failed schema check: {errors[:5]}")
        raise ExtractionInvalid(f"Extraction payload violates schema: {'; '.join(errors[:3])}")

    return payload
