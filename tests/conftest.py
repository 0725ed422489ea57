"""Shared test fixtures for the extraction-service test suite."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _no_cloud_run(monkeypatch):
    """Keep logging and server config in local mode regardless of the host env."""
    monkeypatch.delenv("K_SERVICE", raising=False)
