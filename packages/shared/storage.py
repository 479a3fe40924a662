"""
Local disk blob storage for uploaded documents.
"""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("DATA_DIR", "./data"))
UPLOADS_DIR = DATA_DIR / "uploads"
LOCAL_BUCKET = "local"


def ensure_dirs() -> None:
    """Create data directories if they don't exist."""
    UPLOADS_DIR.mkdir(parents=True, exist_ok=True)


def _key_path(storage_key: str) -> Path:
    safe_name = Path(storage_key).name
    if not safe_name or safe_name != storage_key:
        raise ValueError(f"Invalid storage key: {storage_key!r}")
    return UPLOADS_DIR / safe_name


def store_blob(document_id: str, file_bytes: bytes) -> tuple[str, str]:
    """Save uploaded bytes to local disk. Returns (bucket, key)."""
    ensure_dirs()
    key = f"{document_id}.bin"
    _key_path(key).write_bytes(file_bytes)
    return LOCAL_BUCKET, key


def fetch_blob(storage_key: str) -> bytes:
    """Read previously-stored bytes. Raises FileNotFoundError when missing."""
    return _key_path(storage_key).read_bytes()


def get_blob_path(storage_key: str) -> Path:
    """Return the on-disk path for a stored blob."""
    return _key_path(storage_key)


def delete_blob(storage_key: str) -> None:
    """Remove a stored blob; a missing file is not an error."""
    _key_path(storage_key).unlink(missing_ok=True)
