"""Pytest configuration: make ``app`` and the test helpers importable."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
ROOT = TESTS_DIR.parent
for path in (ROOT, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep host configuration out of ``Settings`` built inside tests."""

    for name in (
        "APP_NAME",
        "METADATA_ADDON_URL",
        "CINEMETA_API_URL",
        "COMICVINE_API_KEY",
        "ENRICHMENT_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
