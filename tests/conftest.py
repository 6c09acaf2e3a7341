"""
Shared pytest fixtures for the Audience Multiplayer test suite.

Timer tests never sleep: FakeClock + FakeScheduler stand in for
time.monotonic and the event loop's call_later.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.config import SessionConfig
from tools.session_state import SessionStateMachine


# ---------------------------------------------------------------------------
# Gemini Mock Helpers (reusable classes)
# ---------------------------------------------------------------------------

class MockGeminiResponse:
    """Simulates a Gemini response with .text property."""

    def __init__(self, text: str):
        self.text = text


class MockGeminiClient:
    """Mock Gemini client that returns canned text responses.

    Usage:
        client = MockGeminiClient(["response1", "response2"])
        resp = await client.aio.models.generate_content(model=..., contents=...)
        assert resp.text == "response1"

    Records every call in .calls and the peak number of overlapping calls
    in .max_in_flight. Pass fail_on={2} to raise on the 2nd call.
    """

    def __init__(self, responses=None, fail_on=None, default="blended action"):
        self._responses = list(responses or [])
        self._fail_on = set(fail_on or ())
        self._default = default
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def aio(self):
        return self

    @property
    def models(self):
        return self

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        number = len(self.calls)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)  # let sibling calls start
            if number in self._fail_on:
                raise RuntimeError(f"model exploded on call {number}")
            if number <= len(self._responses):
                return MockGeminiResponse(self._responses[number - 1])
            return MockGeminiResponse(f"{self._default} {number}")
        finally:
            self.in_flight -= 1


# ---------------------------------------------------------------------------
# Deterministic time
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """call_later() replacement driven by advance()."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles = []

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.clock.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in deadline order."""
        target = self.clock.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.clock.now = max(self.clock.now, handle.when)
            handle.fired = True
            handle.callback(*handle.args)
        self.clock.now = target


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def session(clock, scheduler):
    return SessionStateMachine.create_initial(clock=clock, scheduler=scheduler)


@pytest.fixture
def config():
    return SessionConfig(vote_duration_seconds=30)


@pytest.fixture
def llm_config():
    return SessionConfig(llm_api_key="test-key", party_member_name="Elara", vote_duration_seconds=30)


@pytest.fixture
def mock_llm_limiter():
    """AsyncMock for the rate limiter — patches acquire() as a no-op."""
    limiter = MagicMock()
    limiter.acquire = AsyncMock()
    return limiter


@pytest.fixture
def mock_game():
    """AsyncMock AIDungeonClient with common method stubs."""
    game = MagicMock()
    game.submit_action = AsyncMock(return_value=None)
    game.fetch_most_recent_action = AsyncMock(return_value="The door creaks.")
    game.update_player_name = AsyncMock(return_value=True)
    return game


@pytest.fixture
def chat_log():
    """List that collects every announced chat line, plus its async sender."""
    lines = []

    async def send(text):
        lines.append(text)

    return lines, send
