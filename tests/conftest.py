"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from deskpilot.config import clear_secret_cache, reset_config
from deskpilot.events import RecordingEventSink
from deskpilot.logging import reset_logging

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def events() -> RecordingEventSink:
    """In-memory event sink for asserting on diagnostics."""
    return RecordingEventSink()


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch):
    """Keep host environment variables and cached config out of tests."""
    for name in (
        "DESKPILOT_API_URL",
        "DESKPILOT_API_KEY",
        "DESKPILOT_MODEL",
        "DESKPILOT_BACKEND",
        "DESKPILOT_LOG",
        "OPENROUTER_API_KEY",
        "GEMINI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()
    reset_logging()
