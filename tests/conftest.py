"""Shared fixtures: settings, a seeded in-memory venue, the command registry."""
from typing import Any, Dict, List

import pytest

from bevpro.agent import build_registry
from bevpro.agent.registry import ToolContext
from bevpro.backend.venue import build_venue
from bevpro.config import Settings


class Recorder:
    """Async sink that keeps every message it is handed."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def types(self) -> List[str]:
        return [m.get("type") for m in self.messages]


# ─── Fixtures ──────────────────────────────────────────────────────────────────
@pytest.fixture
def settings():
    return Settings(reconnect_delay_seconds=0.01, playback_lead_seconds=0.25, openai_api_key="")


@pytest.fixture
def venue(settings):
    return build_venue(settings)


@pytest.fixture
def empty_venue(settings):
    return build_venue(settings, seed=False)


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def emitted():
    return Recorder()


@pytest.fixture
def ctx(venue, emitted):
    return ToolContext(session_id="test-session", venue=venue, venue_id=1, emit=emitted)


@pytest.fixture
def product(venue):
    def lookup(name: str):
        found = venue.catalog.find_by_name(name)
        assert found is not None, f"seed product missing: {name}"
        return found

    return lookup
