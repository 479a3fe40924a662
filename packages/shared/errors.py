"""
Error taxonomy shared by the pipeline, the dashboard manager and the API.

Each error carries the HTTP status and a stable code so the API layer can map
it without knowing about individual pipeline steps.
"""
from __future__ import annotations


class PipelineError(Exception):
    status_code = 500
    code = "pipeline_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PipelineError):
    status_code = 404
    code = "not_found"


class InvalidState(PipelineError):
    status_code = 409
    code = "invalid_state"


class AlreadyParsed(InvalidState):
    code = "already_parsed"


class ParseInProgress(InvalidState):
    code = "parse_in_progress"


class PersistenceConflict(PipelineError):
    status_code = 409
    code = "persistence_conflict"


class DocumentUnreadable(PipelineError):
    status_code = 422
    code = "document_unreadable"


class UpstreamTimeout(PipelineError):
    status_code = 504
    code = "upstream_timeout"


class UpstreamInvalid(PipelineError):
    status_code = 502
    code = "upstream_invalid"


class ExtractionTimeout(UpstreamTimeout):
    code = "extraction_timeout"


class ExtractionInvalid(UpstreamInvalid):
    code = "extraction_invalid"


class GenerationFailed(PipelineError):
    status_code = 502
    code = "generation_failed"


class GenerationInProgress(InvalidState):
    code = "generation_in_progress"
