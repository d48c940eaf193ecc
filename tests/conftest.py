"""Shared test fixtures for the call-center test suite."""

from __future__ import annotations

import json
import os
from datetime import date
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py picks these up on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")


# Monday; the first bookable day is Tuesday 2026-10-20
START_DATE = date(2026, 10, 19)


@pytest.fixture
def start_date():
    return START_DATE


@pytest.fixture
def data_store(start_date):
    """Hospital data with a fixed schedule."""
    from callcenter.services.hospital_data import HospitalDataStore

    return HospitalDataStore(start_date=start_date)


@pytest.fixture
def llm():
    """Mock LLM capability that always answers with the same text."""
    mock = MagicMock()
    mock.generate_text.return_value = "Happy to help with that."
    return mock


@pytest.fixture
def failing_llm():
    """Mock LLM capability whose every call fails."""
    from callcenter.services.llm import UpstreamUnavailable

    mock = MagicMock()
    mock.generate_text.side_effect = UpstreamUnavailable("backend down")
    return mock


@pytest.fixture
def scripted_llm():
    """Factory for a mock LLM that routes to ``route`` and replies with ``reply``."""

    def _make(route: str = "fallback", reply: str = "Happy to help with that."):
        mock = MagicMock()

        def _generate(prompt, **kwargs):
            if kwargs.get("operation") == "classify":
                return json.dumps({"route_to": route, "message": "test routing"})
            return reply

        mock.generate_text.side_effect = _generate
        return mock

    return _make


@pytest.fixture
def make_session():
    """Factory for sessions with ``(role, content)`` history tuples."""
    from callcenter.session import Session, Turn

    def _make(
        history: list[tuple[str, str]] | None = None,
        *,
        active_agent: str | None = "greeting",
        context: dict | None = None,
        session_id: str = "test-session",
    ) -> Session:
        return Session(
            id=session_id,
            history=[Turn(role, content) for role, content in history or []],
            active_agent=active_agent,
            context=dict(context or {}),
        )

    return _make
