"""
FastAPI Backend for the Adapt Live Coach

Provides REST API endpoints with:
- Live coaching sessions keyed by module and session key
- Server-sent events for coach state, streamed replies, toasts and speech
- Detections and transcripts pushed in from the trainee's browser
- Supabase persistence with in-memory fallback
"""

import asyncio
import base64
import json
import logging
import os
import signal
import sys
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from lib.logger import get_logger, setup_logging

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the adapt_live_coach package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'adapt_live_coach', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from adapt_live_coach.coach_controller import LiveCoachController
from adapt_live_coach.config import CoachConfig
from adapt_live_coach.errors import (
    ChannelUnavailableError,
    FeedbackServiceError,
    TrainingModuleNotFound,
)
from adapt_live_coach.feedback_service import FeedbackService
from adapt_live_coach.llm_gateway import LLMGateway, OpenAIEmbedder
from adapt_live_coach.models import DetectedObject
from adapt_live_coach.module_repository import ModuleRepository
from adapt_live_coach.session_store import SessionStore
from adapt_live_coach.tts_service import AudioSink, TTSService
from adapt_live_coach.vision import DetectionBuffer

WORDS_PER_SECOND = 2.5
PLAYBACK_GRACE_SECONDS = 2.0

app = FastAPI(
    title="Adapt Live Coach API",
    description="Real-time coaching for hands-on training modules",
    version="1.0.0"
)

# CORS middleware for the web client
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Services ====================

@dataclass
class CoachServices:
    """Process-wide dependencies shared by every live session."""
    config: CoachConfig
    modules: ModuleRepository
    sessions: SessionStore
    feedback: FeedbackService
    gateway: LLMGateway
    openai_client: Optional[AsyncOpenAI] = None


_services: Optional[CoachServices] = None


def get_services() -> CoachServices:
    """Get or create the shared coach services."""
    global _services
    if _services is None:
        config = CoachConfig.from_env()
        if not config.openai_api_key:
            raise HTTPException(status_code=503, detail="OPENAI_API_KEY not configured")

        supabase = get_supabase_client()
        client = AsyncOpenAI(api_key=config.openai_api_key)
        _services = CoachServices(
            config=config,
            modules=ModuleRepository(supabase_client=supabase),
            sessions=SessionStore(supabase_client=supabase),
            feedback=FeedbackService(
                supabase_client=supabase,
                embedder=OpenAIEmbedder(client, model=config.embedding_model),
            ),
            gateway=LLMGateway(
                client=client,
                model=config.openai_model,
                fallback_model=config.fallback_model,
                retry_delay=config.llm_retry_delay,
                retries=config.llm_retries,
            ),
            openai_client=client,
        )
        logger.success("Coach services initialized", data={
            "model": config.openai_model,
            "supabase_connected": supabase is not None,
            "voice_enabled": config.voice_enabled,
        })
    return _services


# ==================== Live sessions ====================

class BrowserAudioSink(AudioSink):
    """
    Sends speech to the trainee's browser over the event stream.

    Playback is considered finished when the browser reports it, or after an
    estimate based on the text length.
    """

    def __init__(self, publish: Callable[[Dict[str, Any]], None]):
        self.publish = publish
        self._finished = asyncio.Event()

    async def _wait_for_playback(self, text: str) -> None:
        self._finished.clear()
        timeout = len(text.split()) / WORDS_PER_SECOND + PLAYBACK_GRACE_SECONDS
        try:
            await asyncio.wait_for(self._finished.wait(), timeout)
        except asyncio.TimeoutError:
            logger.debug(f"🔊 No playback report after {timeout:.1f}s, assuming finished")

    async def play_audio(self, audio: bytes, text: str) -> None:
        self.publish({
            "type": "audio",
            "audio": base64.b64encode(audio).decode("ascii"),
            "mimeType": "audio/mpeg",
            "text": text,
        })
        await self._wait_for_playback(text)

    async def speak_native(self, text: str) -> None:
        self.publish({"type": "speak", "text": text})
        await self._wait_for_playback(text)

    def stop(self) -> None:
        self._finished.set()
        self.publish({"type": "stop_audio"})

    def playback_finished(self) -> None:
        self._finished.set()


class LiveSession:
    """
    A controller plus the browser-facing plumbing for one session key.

    The session closes itself once no event stream has been attached for
    `idle_session_timeout`, or shortly after the module is completed.
    """

    def __init__(self, module_id: str, session_key: str, services: CoachServices):
        self.module_id = module_id
        self.session_key = session_key
        self._queues: List[asyncio.Queue] = []
        self.ready: Optional[asyncio.Future] = None
        self._expiry: Optional[asyncio.TimerHandle] = None
        self._closing: Optional[asyncio.Task] = None

        config = services.config
        self.idle_timeout = config.idle_session_timeout
        self.completed_linger = config.completed_session_linger
        self.detections = DetectionBuffer(
            min_confidence=config.min_detection_confidence,
            stale_after=config.detection_stale_after,
        )
        self.audio = BrowserAudioSink(self.publish)
        self.controller = LiveCoachController(
            module_id,
            session_key,
            modules=services.modules,
            sessions=services.sessions,
            feedback=services.feedback,
            gateway=services.gateway,
            tts=TTSService(self.audio, client=services.openai_client, model=config.tts_model),
            detector=self.detections,
            config=config,
        )
        self.controller.subscribe(self.publish)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.module_id, self.session_key)

    @property
    def is_ready(self) -> bool:
        return (
            self.ready is not None
            and self.ready.done()
            and not self.ready.cancelled()
            and self.ready.exception() is None
        )

    def publish(self, message: Dict[str, Any]) -> None:
        logger.event(self.session_key, message["type"])
        for queue in list(self._queues):
            queue.put_nowait(message)
        if message["type"] == "navigate":
            self.schedule_close(self.completed_linger)

    def open_stream(self) -> asyncio.Queue:
        self.cancel_expiry()
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait({"type": "snapshot", "snapshot": self.controller.snapshot()})
        self._queues.append(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
        if not self._queues:
            self.arm_idle_expiry()

    # ==================== Expiry ====================

    def arm_idle_expiry(self) -> None:
        """Close after the idle timeout unless a stream attaches first."""
        if self._queues:
            return
        delay = self.completed_linger if self.controller.completed else self.idle_timeout
        self.schedule_close(delay)

    def schedule_close(self, delay: float) -> None:
        self.cancel_expiry()
        self._expiry = asyncio.get_running_loop().call_later(delay, self._expire)

    def cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None

    def _expire(self) -> None:
        self._expiry = None
        logger.info(f"⏱️ Live session {self.session_key[:8]}... expired")
        self._closing = asyncio.ensure_future(close_live_session(self.module_id, self.session_key, self))


_live_sessions: Dict[Tuple[str, str], LiveSession] = {}


def get_live_session(module_id: str, session_key: str) -> LiveSession:
    live = _live_sessions.get((module_id, session_key))
    if live is None or not live.is_ready:
        raise HTTPException(status_code=404, detail="Live session not found")
    return live


def _on_session_ready(live: LiveSession, task: asyncio.Future) -> None:
    if task.cancelled() or task.exception() is not None:
        if _live_sessions.get(live.key) is live:
            del _live_sessions[live.key]
        return
    live.arm_idle_expiry()


def open_live_session(module_id: str, session_key: str, services: CoachServices) -> Tuple[LiveSession, bool]:
    """
    Return the registered session for a key, creating it if needed.

    The session is registered before its controller finishes initializing, so
    concurrent callers share one controller by awaiting `live.ready`.
    """
    live = _live_sessions.get((module_id, session_key))
    if live is not None:
        return live, False

    live = LiveSession(module_id, session_key, services)
    live.ready = asyncio.ensure_future(live.controller.initialize())
    live.ready.add_done_callback(lambda task: _on_session_ready(live, task))
    _live_sessions[live.key] = live
    return live, True


async def close_live_session(
    module_id: str,
    session_key: str,
    expected: Optional[LiveSession] = None,
) -> Optional[LiveSession]:
    """Unregister a session and stop its sampler, timers and speech."""
    live = _live_sessions.get((module_id, session_key))
    if live is None or (expected is not None and live is not expected):
        return None
    del _live_sessions[live.key]
    live.cancel_expiry()
    if live.ready is not None and not live.ready.done():
        await asyncio.wait([live.ready])
    await live.controller.shutdown()
    return live


def live_url(module_id: str, session_key: str) -> str:
    return f"modules/{module_id}/live?session_key={session_key}"


# ==================== Pydantic Models ====================

class DetectionIn(BaseModel):
    label: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    bbox: Optional[List[float]] = Field(default=None, min_length=4, max_length=4)


class DetectionsRequest(BaseModel):
    detections: List[DetectionIn]


class TranscriptRequest(BaseModel):
    transcript: str
    is_final: bool = True


class AskRequest(BaseModel):
    question: str = Field(min_length=1)


class FeedbackRequest(BaseModel):
    log_id: str
    fix_or_rating: str = Field(min_length=1)


class ChannelErrorRequest(BaseModel):
    channel: Literal["vision", "speech"]
    message: str


class VoiceRequest(BaseModel):
    enabled: bool


class LiveSessionResponse(BaseModel):
    session_key: str
    url: str
    snapshot: Dict[str, Any]


# ==================== Error mapping ====================

@app.exception_handler(TrainingModuleNotFound)
async def module_not_found_handler(request: Request, exc: TrainingModuleNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(FeedbackServiceError)
async def feedback_error_handler(request: Request, exc: FeedbackServiceError):
    logger.error("Feedback update failed", error=exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ChannelUnavailableError)
async def channel_unavailable_handler(request: Request, exc: ChannelUnavailableError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "channel": exc.channel})


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Adapt Live Coach API",
        "version": "1.0.0",
        "live_sessions": len(_live_sessions),
    }


@app.post("/api/modules/{module_id}/live", response_model=LiveSessionResponse)
async def start_live_session(
    module_id: str,
    session_key: Optional[str] = None,
    services: CoachServices = Depends(get_services),
):
    """
    Create or resume the live coaching session for a module.

    Without a session key a new one is generated; the returned URL is the
    canonical address of the session.
    """
    session_key = session_key or str(uuid.uuid4())
    logger.request("POST", f"/api/modules/{module_id}/live", session_key=session_key)

    live, created = open_live_session(module_id, session_key, services)
    await asyncio.shield(live.ready)
    if created:
        logger.section("LIVE SESSION STARTED", {
            "module_id": module_id,
            "session_key": session_key[:8] + "...",
            "step": live.controller.state.current_step_index + 1,
            "score": live.controller.state.session_score,
        })

    return LiveSessionResponse(
        session_key=session_key,
        url=live_url(module_id, session_key),
        snapshot=live.controller.snapshot(),
    )


@app.get("/api/modules/{module_id}/live")
async def get_live_snapshot(module_id: str, session_key: str):
    """Current coach state, events and flags."""
    return get_live_session(module_id, session_key).controller.snapshot()


@app.get("/api/modules/{module_id}/live/events")
async def live_events(module_id: str, session_key: str):
    """
    Stream coach notifications with SSE.

    Message types: snapshot, state, chunk, event, toast, navigate, announcement,
    feedback_request, citations, audio, speak, stop_audio.
    """
    live = get_live_session(module_id, session_key)
    queue = live.open_stream()

    async def generate():
        try:
            while True:
                message = await queue.get()
                yield f"data: {json.dumps(message)}\n\n"
        finally:
            live.close_stream(queue)

    return StreamingResponse(generate(), media_type="text/event-stream")


@app.post("/api/modules/{module_id}/live/detections")
async def push_detections(module_id: str, session_key: str, request: DetectionsRequest):
    """Latest object detections from the trainee's camera."""
    live = get_live_session(module_id, session_key)
    live.controller.ensure_channel("vision")
    live.detections.push(
        DetectedObject(
            label=d.label,
            confidence=d.confidence,
            bbox=tuple(d.bbox) if d.bbox else (0.0, 0.0, 0.0, 0.0),
        )
        for d in request.detections
    )
    return {"accepted": len(request.detections)}


@app.post("/api/modules/{module_id}/live/transcript")
async def push_transcript(module_id: str, session_key: str, request: TranscriptRequest):
    """Speech recognition result from the trainee's microphone."""
    live = get_live_session(module_id, session_key)
    live.controller.ensure_channel("speech")
    intent = live.controller.handle_transcript(request.transcript, is_final=request.is_final)
    return {"intent": intent.type.value, "query": intent.query}


@app.post("/api/modules/{module_id}/live/advance")
async def advance_step(module_id: str, session_key: str):
    live = get_live_session(module_id, session_key)
    await live.controller.advance_step()
    return live.controller.snapshot()


@app.post("/api/modules/{module_id}/live/ask")
async def ask_question(module_id: str, session_key: str, request: AskRequest):
    live = get_live_session(module_id, session_key)
    task = live.controller.ask(request.question)
    return {"accepted": task is not None}


@app.post("/api/modules/{module_id}/live/feedback")
async def submit_feedback(module_id: str, session_key: str, request: FeedbackRequest):
    """Rate a coach response ("good") or describe what actually worked."""
    live = get_live_session(module_id, session_key)
    updated = await live.controller.submit_feedback(request.log_id, request.fix_or_rating)
    return {"updated": updated}


@app.post("/api/modules/{module_id}/live/channel-error")
async def report_channel_error(module_id: str, session_key: str, request: ChannelErrorRequest):
    """Camera or microphone permission/device failure reported by the browser."""
    live = get_live_session(module_id, session_key)
    disabled = live.controller.report_channel_error(request.channel, request.message)
    return {"disabled": disabled, "channels": list(live.controller.disabled_channels)}


@app.post("/api/modules/{module_id}/live/voice")
async def set_voice(module_id: str, session_key: str, request: VoiceRequest):
    live = get_live_session(module_id, session_key)
    live.controller.set_voice_enabled(request.enabled)
    return {"voice_enabled": live.controller.voice_enabled}


@app.post("/api/modules/{module_id}/live/playback-finished")
async def playback_finished(module_id: str, session_key: str):
    get_live_session(module_id, session_key).audio.playback_finished()
    return {"status": "ok"}


@app.post("/api/modules/{module_id}/live/reset")
async def reset_session(module_id: str, session_key: str):
    live = get_live_session(module_id, session_key)
    await live.controller.reset_session()
    return live.controller.snapshot()


@app.delete("/api/modules/{module_id}/live")
async def end_live_session(module_id: str, session_key: str):
    """Trainee navigated away: stop sampling, timers and speech."""
    live = await close_live_session(module_id, session_key)
    if live is None:
        raise HTTPException(status_code=404, detail="Live session not found")
    return {"status": "closed", "session_key": session_key}


@app.get("/api/modules/{module_id}/sessions/{session_key}/summary")
async def get_session_summary(
    module_id: str,
    session_key: str,
    services: CoachServices = Depends(get_services),
):
    """Stored progress plus time spent per step."""
    summary = await services.sessions.get_session_summary(module_id, session_key)
    if summary is None:
        raise HTTPException(status_code=404, detail="Session not found")

    session = summary.session
    return {
        "module_id": session.module_id,
        "session_key": session.session_token,
        "current_step_index": session.current_step_index,
        "is_completed": session.is_completed,
        "score": session.score,
        "events": [e.to_dict() for e in session.live_coach_events or []],
        "started_at": summary.started_at,
        "ended_at": summary.ended_at,
        "durations_per_step": {str(k): v for k, v in summary.durations_per_step.items()},
    }


@app.on_event("startup")
async def startup_event():
    logger.section("ADAPT LIVE COACH STARTING")


@app.on_event("shutdown")
async def shutdown_event():
    """Close every live session."""
    for module_id, session_key in list(_live_sessions):
        await close_live_session(module_id, session_key)
    logger.info("🛑 All live sessions closed")


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
