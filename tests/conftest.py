"""Shared fixtures and configuration for pytest."""

import asyncio
from collections.abc import Callable
from datetime import timezone
from pathlib import Path

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wellness_companion.channels.base import ChatMessage, InMemoryConversationChannel
from wellness_companion.checkin.steps import CheckInEvents
from wellness_companion.config import settings
from wellness_companion.scheduler import CheckInScheduler
from wellness_companion.state import AgentState, StateSlot
from wellness_companion.tone import ToneAnalysis, ToneAnalyzer

USER_ID = "alice"


# =============================================================================
# Settings isolation
# =============================================================================

@pytest.fixture(autouse=True)
def users_root(tmp_path, monkeypatch) -> Path:
    """Point per-user storage at a temporary directory and pin defaults."""
    root = tmp_path / "users"
    monkeypatch.setattr(settings, "USERS_ROOT", root)
    monkeypatch.setattr(settings, "DEFAULT_CHECK_IN_TIME", "09:00")
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "UTC")
    monkeypatch.setattr(settings, "DEFAULT_MODEL_PROVIDER", "openai")
    monkeypatch.setattr(settings, "AGENT_NAME", "Wellness Companion")
    monkeypatch.setattr(settings, "CHECK_IN_MODE", "workflow")
    monkeypatch.setattr(settings, "TONE_ANALYZER", "keyword")
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    monkeypatch.setattr(settings, "DEFAULT_USER_ID", "default")
    return root


# =============================================================================
# Collaborators
# =============================================================================

class FailingChannel(InMemoryConversationChannel):
    """Channel whose sends fail when the text contains a marker."""

    def __init__(self, fail_when: str = "") -> None:
        super().__init__()
        self.fail_when = fail_when

    async def send_message(self, user_id: str, content: str) -> ChatMessage:
        if self.fail_when in content:
            raise ConnectionError("client disconnected")
        return await super().send_message(user_id, content)


class StubAnalyzer(ToneAnalyzer):
    """Returns a fixed analysis and remembers what it was asked."""

    def __init__(self, tone: str = "neutral", intensity: int = 5, error: Exception | None = None) -> None:
        self.result = ToneAnalysis(tone=tone, intensity=intensity, keywords=[])
        self.error = error
        self.calls: list[str] = []

    async def analyze(self, text: str) -> ToneAnalysis:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def channel() -> InMemoryConversationChannel:
    return InMemoryConversationChannel()


@pytest.fixture
def events() -> CheckInEvents:
    return CheckInEvents()


@pytest.fixture
def slot() -> StateSlot:
    return StateSlot(AgentState(user_id=USER_ID))


@pytest.fixture
def scheduler() -> CheckInScheduler:
    """Scheduler on a runtime that is never started; jobs stay pending."""
    return CheckInScheduler(AsyncIOScheduler(timezone=timezone.utc))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
