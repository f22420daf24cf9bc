"""Shared fixtures for agentstream tests."""

from __future__ import annotations

import pytest

from .helpers import RecordingObserver


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
