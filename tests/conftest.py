"""
Shared fixtures and fakes for the live coach tests.

Time runs on a manual FakeScheduler; the LLM, speech output and embeddings
are in-process fakes; persistence uses the stores' in-memory mode.
"""

import asyncio
import os
import sys
from typing import Callable, List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "adapt_live_coach", "src"))

from adapt_live_coach.coach_controller import LiveCoachController
from adapt_live_coach.config import CoachConfig
from adapt_live_coach.errors import LLMUnavailableError
from adapt_live_coach.feedback_service import FeedbackService
from adapt_live_coach.llm_gateway import ChatSession, StreamChunk
from adapt_live_coach.module_repository import ModuleRepository
from adapt_live_coach.prompt_context import TaglineRotator
from adapt_live_coach.session_store import SessionStore
from adapt_live_coach.tts_service import AudioSink, TTSService
from adapt_live_coach.vision import DetectionBuffer


class FakeHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """call_later on a manual clock; `advance` fires due callbacks in order."""

    def __init__(self):
        self.now = 0.0
        self._handles: List[FakeHandle] = []

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, lambda: callback(*args))
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self._handles if not h.cancelled]


class FakeGateway:
    """Stands in for LLMGateway: records prompts and streams canned replies."""

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.default_reply = "Check the trunk for the lug wrench."
        self.fail = False
        self.gate: Optional[asyncio.Event] = None
        self.prompts: List[str] = []
        self.chats: List[ChatSession] = []

    def start_chat(self, steps_context, full_transcript=None, history=None):
        session = ChatSession(system_instruction=steps_context, history=list(history or []))
        self.chats.append(session)
        return session

    async def stream_reply(self, session, prompt):
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise LLMUnavailableError("Sorry, the AI tutor is currently unavailable.")
        reply = self.replies.pop(0) if self.replies else self.default_reply
        middle = len(reply) // 2
        for piece in (reply[:middle], reply[middle:]):
            yield StreamChunk(text=piece)
        session.record(prompt, reply)


class FakeSink(AudioSink):
    """Records what would have been played on the trainee's device."""

    def __init__(self):
        self.played: List[str] = []
        self.native: List[str] = []
        self.stops = 0

    async def play_audio(self, audio: bytes, text: str) -> None:
        self.played.append(text)

    async def speak_native(self, text: str) -> None:
        self.native.append(text)

    def stop(self) -> None:
        self.stops += 1


VOCABULARY = ("wrench", "nut", "jack", "tire", "phone", "loose", "tight")


class FakeEmbedder:
    """Word-count vectors over a tiny vocabulary."""

    def __init__(self):
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY]


class FailingEmbedder:
    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding service down")


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def feedback_service(embedder):
    return FeedbackService(embedder=embedder)


@pytest.fixture
def module_repository():
    return ModuleRepository()


@pytest.fixture
def make_controller(scheduler, gateway, sink, session_store, feedback_service, module_repository):
    """Factory for controllers wired to the shared fakes."""

    def _make(module_id: str = "change-a-tire", session_token: str = "token-1", **config_overrides):
        config = CoachConfig(**config_overrides)
        return LiveCoachController(
            module_id,
            session_token,
            modules=module_repository,
            sessions=session_store,
            feedback=feedback_service,
            gateway=gateway,
            tts=TTSService(sink),
            detector=DetectionBuffer(),
            config=config,
            scheduler=scheduler,
            taglines=TaglineRotator(["Let me know if that helped."]),
        )

    return _make
