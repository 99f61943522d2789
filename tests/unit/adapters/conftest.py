"""Adapter test fixtures."""

from __future__ import annotations

import pytest

from tests.helpers import ScriptedHttp


@pytest.fixture
def http() -> ScriptedHttp:
    """A scripted stand-in for the adapter's ``httpx.AsyncClient``."""
    return ScriptedHttp()
