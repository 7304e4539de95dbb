"""Pytest configuration shared by the suite.

Makes the workspace packages importable without an install and keeps tests
hermetic: ``SI_*``/``DATABASE_URL`` settings from the developer's shell or
``.env`` never leak in, and the shared database engine is disposed after each
test so every test can point it at its own temporary SQLite file.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs/db/src"), str(_ROOT)]
    if p not in sys.path
]

_ENV_VARS = (
    "DATABASE_URL",
    "SI_MAX_UPLOAD_BYTES",
    "SI_PREVIEW_LIMIT",
    "SI_DATE_ORDER",
    "SI_EVENT_LOG_SIZE",
    "SI_DEBUG",
    "STATEMENT_INGEST_LOG_LEVEL",
    "STATEMENT_INGEST_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # The CLI loads .env from the CWD; run from an empty directory
    monkeypatch.chdir(tmp_path)
    yield
    from db.client import dispose_engine

    dispose_engine()
