"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the operator's deployctl and AWS settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("DEPLOYCTL_") or key == "DEFAULT_AWS_REGION":
            monkeypatch.delenv(key, raising=False)
