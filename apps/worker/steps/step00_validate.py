"""
Step 0: Document validation.
Verify the stored document can be handed to the extraction service:
supported content type, non-zero size, blob reference present.
"""
from __future__ import annotations

from packages.db.models import Document
from packages.shared.errors import DocumentUnreadable

SUPPORTED_CONTENT_TYPES = frozenset({"application/pdf", "text/plain"})


def normalize_content_type(content_type: str | None) -> str:
    """Strip parameters such as '; charset=utf-8' and lowercase."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def validate_document(doc: Document) -> None:
    """Raise DocumentUnreadable when *doc* cannot be parsed."""
    content_type = normalize_content_type(doc.content_type)
    if content_type not in SUPPORTED_CONTENT_TYPES:
        raise DocumentUnreadable(
            f"Document {doc.id} has unsupported content type '{doc.content_type}'"
        )

    if not doc.size_bytes or doc.size_bytes <= 0:
        raise DocumentUnreadable(f"Document {doc.id} has zero bytes")

    if not doc.storage_key:
        raise DocumentUnreadable(f"Document {doc.id} has no stored file")
