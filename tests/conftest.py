"""
Point the database and blob store at a throwaway directory before any
application module is imported.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="medichat-tests-"))

os.environ.setdefault("DATA_DIR", str(_TEST_DATA_DIR))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{(_TEST_DATA_DIR / 'test_medichat.db').as_posix()}")
os.environ.setdefault("AUDIT_LOGGING", "false")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-not-used")
