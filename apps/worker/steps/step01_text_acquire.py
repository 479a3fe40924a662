"""
Step 1: Text acquisition.
PDFs: embedded text per page via PyMuPDF (fitz), page-numbered.
Plain text: UTF-8 decode (invalid bytes replaced).
Output is capped so a single oversized upload cannot blow the model context.
"""
from __future__ import annotations

import logging
import os

import fitz  # PyMuPDF

from packages.shared.errors import DocumentUnreadable
from packages.shared.models import Warning

from apps.worker.steps.step00_validate import normalize_content_type

logger = logging.getLogger(__name__)

_MAX_PAGES = int(os.getenv("EXTRACTION_MAX_PAGES", "40"))
_MAX_CHARS = int(os.getenv("EXTRACTION_MAX_CHARS", "60000"))


def acquire_text(
    data: bytes,
    content_type: str,
    max_pages: int | None = None,
    max_chars: int | None = None,
) -> tuple[str, list[Warning]]:
    """
    Turn raw document bytes into text for the extraction prompt.

    Returns:
        (text, warnings)
    """
    max_pages = _MAX_PAGES if max_pages is None else max_pages
    max_chars = _MAX_CHARS if max_chars is None else max_chars
    warnings: list[Warning] = []

    kind = normalize_content_type(content_type)
    if kind == "text/plain":
        text = data.decode("utf-8", errors="replace")
    elif kind == "application/pdf":
        text = _pdf_text(data, max_pages, warnings)
    else:
        raise DocumentUnreadable(f"Unsupported content type '{content_type}'")

    text = text.strip()
    if not text:
        raise DocumentUnreadable("Document contains no extractable text")

    if len(text) > max_chars:
        warnings.append(Warning(
            code="TEXT_TRUNCATED",
            message=f"Document text has {len(text)} chars; truncated to {max_chars}",
        ))
        text = text[:max_chars]

    return text, warnings


def _pdf_text(data: bytes, max_pages: int, warnings: list[Warning]) -> str:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise DocumentUnreadable(f"Cannot open PDF: {exc}") from exc

    try:
        total = doc.page_count
        limit = min(total, max_pages)
        if total > max_pages:
            warnings.append(Warning(
                code="MAX_PAGES_EXCEEDED",
                message=f"PDF has {total} pages but max_pages={max_pages}; reading first {max_pages}",
            ))

        chunks: list[str] = []
        for i in range(limit):
            try:
                page_text = doc[i].get_text("text") or ""
            except Exception as exc:
                # Some PDFs have font metadata PyMuPDF can't parse
                logger.warning(f"Page {i + 1}: embedded text extraction failed ({exc})")
                warnings.append(Warning(
                    code="TEXT_EXTRACT_ERROR",
                    message=f"Page {i + 1}: embedded text extraction failed ({exc})",
                ))
                continue
            if page_text.strip():
                chunks.append(f"--- Page {i + 1} ---\n{page_text.strip()}")
        return "\n\n".join(chunks)
    finally:
        doc.close()
