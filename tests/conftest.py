"""
Core pytest configuration and fixtures for Conductor testing.

This module provides shared test fixtures, a scripted fake LLM backend, and
utilities that support the pillar-based testing architecture.
"""

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from conductor.gateway import ProviderGateway
from conductor.llm import LLM
from conductor.models import (
    ASSISTANT_ROLE,
    USER_ROLE,
    ChatMessage,
    ModelInfo,
    ToolCall,
    Track,
)
from conductor.playback import InMemory

# ===== FAKES =====


class ScriptedLLM(LLM):
    """LLM backend that replays a fixed list of responses.

    Each item is a response dict, an exception to raise, or an async callable
    returning either. Calls are recorded. When the script runs out the
    backend answers "Done.".
    """

    name = "scripted"

    def __init__(self, responses: Optional[List[Any]] = None, models: Optional[List[ModelInfo]] = None):
        super().__init__("scripted-1")
        self.responses = list(responses or [])
        self.models = models if models is not None else [
            ModelInfo(id="scripted-1", name="Scripted One"),
            ModelInfo(id="scripted-2", name="Scripted Two"),
        ]
        self.calls: List[Dict[str, Any]] = []
        self.list_calls = 0

    @staticmethod
    def say(text: str) -> Dict[str, Any]:
        return {"content": text, "tool_calls": []}

    @staticmethod
    def call(name: str, call_id: Optional[str] = None, **args: Any) -> ToolCall:
        if call_id is None:
            return ToolCall(function_name=name, function_args=args)
        return ToolCall(id=call_id, function_name=name, function_args=args)

    @staticmethod
    def use(*calls: ToolCall, content: str = "") -> Dict[str, Any]:
        return {"content": content, "tool_calls": list(calls)}

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        self.calls.append(
            {
                "messages": list(messages),
                "model": model,
                "tools": tools,
                "system": system,
                "max_tokens": max_tokens,
            }
        )
        if not self.responses:
            return self.say("Done.")
        item = self.responses.pop(0)
        if callable(item):
            item = await item()
        if isinstance(item, BaseException):
            raise item
        return item

    def extract_content(self, response: Any) -> str:
        return response.get("content") or ""

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        return list(response.get("tool_calls") or [])

    async def list_models(self) -> List[ModelInfo]:
        self.list_calls += 1
        return list(self.models)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_messages() -> List[ChatMessage]:
    """Sample chat messages for testing."""
    return [
        ChatMessage(role=USER_ROLE, content="Play some jazz"),
        ChatMessage(role=ASSISTANT_ROLE, content="Playing Kind of Blue by Miles Davis."),
        ChatMessage(role=USER_ROLE, content="Turn it up a bit"),
        ChatMessage(role=ASSISTANT_ROLE, content="Volume is now 70."),
    ]


@pytest.fixture
def library() -> List[Track]:
    """A small mixed-genre library."""
    return [
        Track(id="jazz/01.flac", title="So What", artist="Miles Davis", album="Kind of Blue", genre="Jazz", duration=562),
        Track(id="jazz/02.flac", title="Blue in Green", artist="Miles Davis", album="Kind of Blue", genre="Jazz", duration=337),
        Track(id="jazz/03.flac", title="Take Five", artist="Dave Brubeck", album="Time Out", genre="Jazz", duration=324),
        Track(id="rock/01.flac", title="Smells Like Teen Spirit", artist="Nirvana", album="Nevermind", genre="Rock", duration=301),
        Track(id="rock/02.flac", title="Come as You Are", artist="Nirvana", album="Nevermind", genre="Rock", duration=219),
        Track(id="ambient/01.flac", title="1/1", artist="Brian Eno", album="Music for Airports", genre="Ambient", duration=1021),
        Track(id="electronic/01.flac", title="One More Time", artist="Daft Punk", album="Discovery", genre="Electronic", duration=320),
    ]


@pytest.fixture
def workout_library() -> List[Track]:
    """Five workout tracks among unrelated ones."""
    workout = [
        Track(id=f"workout/{i:02d}.flac", title=f"Pump {i}", artist="Gym Crew", album="Lift", genre="Workout", duration=200 + i)
        for i in range(1, 6)
    ]
    other = [
        Track(id="classical/01.flac", title="Clair de Lune", artist="Debussy", album="Suite bergamasque", genre="Classical", duration=300),
        Track(id="jazz/01.flac", title="So What", artist="Miles Davis", album="Kind of Blue", genre="Jazz", duration=562),
    ]
    return other + workout


@pytest.fixture
def player(library) -> InMemory:
    """In-memory playback over the sample library."""
    return InMemory(library)


# ===== MOCK FIXTURES =====


@pytest.fixture
def scripted():
    """The ScriptedLLM class, for building backends with a response script."""
    return ScriptedLLM


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_gateway():
    """Build a gateway over a backend without real backoff delays."""

    def factory(llm: LLM, **kwargs) -> ProviderGateway:
        kwargs.setdefault("sleep", no_sleep)
        return ProviderGateway(llm, **kwargs)

    return factory


@pytest.fixture
def mock_speech():
    """Speech collaborator that records scripts."""
    mock = MagicMock()

    async def speak(script, persona):
        mock.spoken.append((script, persona))

    mock.spoken = []
    mock.speak = speak
    return mock


# ===== APP FIXTURES =====


@pytest.fixture
def test_app(player):
    """
    Provides a Conductor session with simple, predictable pillars.

    Uses the offline Echo backend and in-memory playback so no network or
    SDK is touched.
    """
    from conductor import Conductor
    from conductor.llm import Echo

    return Conductor(llm=Echo(), playback=player)


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow-running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
