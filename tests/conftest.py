"""Shared test fixtures and configuration."""
import asyncio
import os
import time
from typing import Awaitable, Callable, List
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
for _key in (
    "OPENAI_API_KEY",
    "DEEPGRAM_API_KEY",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "TWILIO_AUTH_TOKEN",
    "N8N_BASE",
    "PUBLIC_BASE_URL",
):
    os.environ.pop(_key, None)
os.environ.setdefault("BUSINESS_NAME", "Test Plumbing")
os.environ.setdefault("BUSINESS_ID", "test_plumbing")

from app.main import app
from app.core.config import Settings
from app.services.call_session.models import LeadFields


@pytest.fixture
def test_settings():
    """Settings with every provider configured."""
    return Settings(
        public_base_url="https://voice.example.com",
        openai_api_key="test-openai-key",
        deepgram_api_key="test-deepgram-key",
        elevenlabs_api_key="test-eleven-key",
        elevenlabs_voice_id="voice123",
        twilio_auth_token=None,
        n8n_base="https://n8n.example.com/",
        business_id="test_plumbing",
        business_name="Test Plumbing",
        cal_summary_prefix="Job",
        prime_silence_frames=2,
        greeting_enabled=False,
    )


class FakeTransport:
    """Stands in for the Twilio websocket: records what is sent and when."""

    def __init__(self):
        self.open = True
        self.fail_sends = False
        self.sent: List[str] = []
        self.sent_at: List[float] = []

    async def send(self, message: str) -> None:
        if self.fail_sends:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(message)
        self.sent_at.append(time.monotonic())

    def is_open(self) -> bool:
        return self.open


class FakeTranscriptionBridge:
    """In-memory replacement for the Deepgram bridge."""

    def __init__(self, on_final: Callable[[str], Awaitable[None]], available: bool = True):
        self.on_final = on_final
        self.available = available
        self.attempted = False
        self.is_open = False
        self.open_calls = 0
        self.close_calls = 0
        self.audio: List[bytes] = []

    async def open(self) -> bool:
        self.open_calls += 1
        self.attempted = True
        self.is_open = self.available
        return self.is_open

    async def send_audio(self, audio: bytes) -> None:
        if self.is_open:
            self.audio.append(audio)

    async def close(self) -> None:
        self.close_calls += 1
        self.is_open = False

    async def emit(self, text: str) -> None:
        """Simulate a finalized transcript arriving from Deepgram."""
        await self.on_final(text)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def bridges():
    """Bridges created by ``bridge_factory``, in creation order."""
    return []


@pytest.fixture
def bridge_factory(bridges):
    def _factory(on_final):
        bridge = FakeTranscriptionBridge(on_final)
        bridges.append(bridge)
        return bridge
    return _factory


@pytest.fixture
def mock_agent():
    """Mock dialogue service."""
    agent = Mock()
    agent.generate_reply = AsyncMock(return_value="Sure, what suburb are you in?")
    agent.extract_lead = AsyncMock(
        return_value=LeadFields(
            caller_name="Sam",
            suburb="Newtown",
            job_type="blocked drain",
            urgency="today",
            call_summary="Blocked drain in Newtown.",
        )
    )
    return agent


@pytest.fixture
def mock_tts():
    """Mock synthesis service returning one and a half frames of audio."""
    tts = Mock()
    tts.synthesize = AsyncMock(return_value=b"\x10" * 240)
    return tts


@pytest.fixture
def mock_dispatcher():
    dispatcher = Mock()
    dispatcher.dispatch = AsyncMock(return_value=True)
    return dispatcher


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_completion = Mock()
    mock_completion.choices = [Mock(message=Mock(content="Sure, I can book that in."))]
    mock_client.chat.completions.create = AsyncMock(return_value=mock_completion)
    mock_client.audio.speech.create = AsyncMock(return_value=Mock(content=b"\x00\x00" * 240))
    return mock_client


@pytest.fixture
def failing_openai():
    """OpenAI client whose every call fails."""
    mock_client = Mock()
    mock_client.chat.completions.create = AsyncMock(side_effect=Exception("service unavailable"))
    mock_client.audio.speech.create = AsyncMock(side_effect=Exception("service unavailable"))
    return mock_client


@pytest.fixture
def clean_call_sessions():
    """Clean up call sessions before and after tests."""
    from app.services.call_session import manager
    manager._sessions.clear()
    yield
    manager._sessions.clear()


@pytest.fixture
def test_client():
    """Create FastAPI test client."""
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Async polling helper for background tasks."""
    return wait_for
