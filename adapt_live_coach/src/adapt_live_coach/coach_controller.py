"""
Live Coach Controller

Effect layer around the pure coach reducer. Fuses vision ticks, speech
transcripts, escalation timers and a streaming LLM session into one per-step
tutoring loop:

- Vision ticks run the proactive check (forbidden item -> correction or branch,
  all required items held for a grace period -> auto-advance, required items
  missing for a while -> hint).
- Final transcripts carry advance commands and wake-phrase questions.
- At most one AI interaction (hint, correction, question or branch start) is in
  flight; the `busy` flag in CoachState is claimed synchronously before any
  awaiting starts, so concurrent triggers are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from adapt_live_coach.coach_state import (
    AdvanceStep,
    AppendAiResponse,
    BeginInteraction,
    CoachAction,
    CoachState,
    CoachStatus,
    DecrementScore,
    EndBranch,
    EndInteraction,
    InitializeSession,
    ResetAiResponse,
    ResetSession,
    SetStatus,
    StartBranch,
    coach_reducer,
)
from adapt_live_coach.config import CoachConfig
from adapt_live_coach.errors import ChannelUnavailableError, FeedbackServiceError, TrainingModuleNotFound
from adapt_live_coach.feedback_service import FeedbackService
from adapt_live_coach.llm_gateway import ChatSession, LLMGateway
from adapt_live_coach.models import (
    AIFeedbackLog,
    CoachEventType,
    DetectedObject,
    LiveCoachEvent,
    ModuleNeeds,
    SessionState,
    StepNeeds,
    TrainingModule,
)
from adapt_live_coach.module_repository import ModuleRepository
from adapt_live_coach.prompt_context import (
    InteractionType,
    TaglineRotator,
    build_live_coach_prompt,
    build_steps_context,
    interaction_user_prompt,
    required_items_for,
)
from adapt_live_coach.session_store import SessionStore
from adapt_live_coach.speech_commands import SpeechCommandParser, SpeechIntent, SpeechIntentType
from adapt_live_coach.timers import Scheduler, TimerPurpose, TimerWheel
from adapt_live_coach.tts_service import TTSService
from adapt_live_coach.vision import ObjectDetector, VisionSampler, detected_labels

logger = logging.getLogger(__name__)

CHANNELS = ("vision", "speech")

_INTERACTION_STATUS = {
    InteractionType.HINT: CoachStatus.HINTING,
    InteractionType.CORRECTION: CoachStatus.CORRECTING,
    InteractionType.QUERY: CoachStatus.THINKING,
}

_INTERACTION_EVENT = {
    InteractionType.HINT: CoachEventType.HINT,
    InteractionType.CORRECTION: CoachEventType.CORRECTION,
    InteractionType.QUERY: CoachEventType.TUTORING,
}


@dataclass
class StepFlags:
    """Per-step bookkeeping, reset whenever the step changes."""
    last_log_id: Optional[str] = None
    feedback_given: bool = False


class LiveCoachController:
    """Owns one trainee's live coaching session."""

    def __init__(
        self,
        module_id: str,
        session_token: str,
        modules: ModuleRepository,
        sessions: SessionStore,
        feedback: FeedbackService,
        gateway: LLMGateway,
        tts: TTSService,
        detector: Optional[ObjectDetector] = None,
        config: Optional[CoachConfig] = None,
        scheduler: Optional[Scheduler] = None,
        taglines: Optional[TaglineRotator] = None,
    ):
        self.module_id = module_id
        self.session_token = session_token
        self.modules = modules
        self.sessions = sessions
        self.feedback = feedback
        self.gateway = gateway
        self.tts = tts
        self.detector = detector
        self.config = config or CoachConfig()
        self.taglines = taglines or TaglineRotator()

        self.state = CoachState()
        self.timers = TimerWheel(scheduler)
        self.parser = SpeechCommandParser(self.config.wake_phrase)
        self.sampler = (
            VisionSampler(detector, self.on_detections, self.config.vision_interval)
            if detector is not None
            else None
        )

        self.events: List[LiveCoachEvent] = []
        self.module_needs: ModuleNeeds = {}
        self.voice_enabled = self.config.voice_enabled
        self.completed = False
        self.disabled_channels: Dict[str, str] = {}
        self.step_flags = StepFlags()

        self._chat: Optional[ChatSession] = None
        self._main_chat: Optional[ChatSession] = None
        self._last_labels: Set[str] = set()
        self._rated_logs: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ==================== Notifications ====================

    def subscribe(self, listener: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """Register a listener for state/toast/navigation notifications."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, **payload: Any) -> None:
        message = {"type": kind, **payload}
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.warning(f"⚠️ [LiveCoach] Listener failed on '{kind}': {e}")

    def _toast(self, level: str, title: str, message: str) -> None:
        self._emit("toast", level=level, title=title, message=message)

    def dispatch(self, action: CoachAction) -> CoachState:
        previous = self.state
        self.state = coach_reducer(previous, action)
        if self.state is not previous and self.state != previous:
            self._emit("state", state=self.state.to_dict())
        return self.state

    # ==================== Task bookkeeping ====================

    def _spawn(self, awaitable: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("❌ [LiveCoach] Background task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait until every spawned coaching task (including follow-ups) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ==================== Lifecycle ====================

    async def initialize(self, start_vision: bool = True) -> CoachState:
        """
        Load the module, resume any saved progress and open the chat session.

        Raises:
            TrainingModuleNotFound: if the module does not exist
        """
        module = await self.modules.get_module(self.module_id)
        if module is None or not module.steps:
            self.dispatch(SetStatus(CoachStatus.IDLE))
            self._toast("error", "Module Not Found", f"Could not load module '{self.module_id}'.")
            raise TrainingModuleNotFound(self.module_id)

        self.module_needs = await self.modules.get_module_needs()

        step_index, score = 0, None
        saved = await self.sessions.get_session(self.module_id, self.session_token)
        if saved is not None:
            step_index = min(max(saved.current_step_index or 0, 0), len(module.steps) - 1)
            score = saved.score
            self.events = list(saved.live_coach_events or [])
            self.completed = bool(saved.is_completed)
            logger.info(
                f"💾 [LiveCoach] Resuming session {self.session_token[:8]}... at step {step_index + 1}"
            )

        self.dispatch(InitializeSession(step_index=step_index, module=module, score=score))
        self._chat = self.gateway.start_chat(build_steps_context(module), module.transcript)

        if self.completed:
            self.dispatch(SetStatus(CoachStatus.IDLE))
            logger.info(f"🏁 [LiveCoach] Session {self.session_token[:8]}... already complete")
            return self.state

        if self.detector is not None:
            try:
                await self.detector.initialize()
            except Exception as e:
                self.report_channel_error("vision", str(e))

        if start_vision and self.sampler is not None and "vision" not in self.disabled_channels:
            self.sampler.start()

        self.dispatch(SetStatus(CoachStatus.LISTENING))
        logger.info(f"✅ [LiveCoach] Session ready for '{module.title}' ({len(module.steps)} steps)")
        return self.state

    async def shutdown(self) -> None:
        """Stop sampling, timers and speech. In-flight LLM streams run to completion."""
        self.timers.cancel_all()
        if self.sampler is not None:
            await self.sampler.stop()
        self.tts.cancel()
        logger.info(f"🛑 [LiveCoach] Session {self.session_token[:8]}... closed")

    async def reset_session(self) -> None:
        """Start the module over with a full score."""
        self.timers.cancel_all()
        self.tts.cancel()
        if self._main_chat is not None:
            self._chat, self._main_chat = self._main_chat, None
        self.dispatch(ResetSession())
        self.dispatch(SetStatus(CoachStatus.LISTENING))
        self.events = []
        self.completed = False
        self.step_flags = StepFlags()
        await self.sessions.save_session(SessionState(
            module_id=self.module_id,
            session_token=self.session_token,
            current_step_index=0,
            is_completed=False,
            live_coach_events=[],
            score=self.state.session_score,
        ))

    def set_voice_enabled(self, enabled: bool) -> None:
        self.voice_enabled = enabled
        if not enabled:
            self.tts.cancel()

    def ensure_channel(self, channel: str) -> None:
        """Raise ChannelUnavailableError if `channel` has been disabled."""
        if channel in self.disabled_channels:
            raise ChannelUnavailableError(channel, self.disabled_channels[channel])

    def report_channel_error(self, channel: str, message: str) -> bool:
        """
        Disable the vision or speech channel after a permission/device failure.

        The error is surfaced once; the rest of the session keeps working.
        Returns False if the channel was already disabled.
        """
        if channel not in CHANNELS:
            raise ValueError(f"Unknown channel '{channel}'")
        if channel in self.disabled_channels:
            return False

        self.disabled_channels[channel] = message
        if channel == "vision":
            self.timers.cancel_all()
            if self.sampler is not None and self.sampler.running:
                self._spawn(self.sampler.stop())
            self._toast("error", "Camera Unavailable", f"Vision coaching is off: {message}")
        else:
            self._toast("error", "Microphone Unavailable", f"Voice commands are off: {message}")
        logger.warning(f"⚠️ [LiveCoach] {channel} channel disabled: {message}")
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "sessionToken": self.session_token,
            "state": self.state.to_dict(),
            "events": [e.to_dict() for e in self.events],
            "completed": self.completed,
            "voiceEnabled": self.voice_enabled,
            "disabledChannels": dict(self.disabled_channels),
            "lastLogId": self.step_flags.last_log_id,
            "feedbackGiven": self.step_flags.feedback_given,
        }

    # ==================== Helpers ====================

    def _record_event(self, event_type: CoachEventType) -> LiveCoachEvent:
        event = LiveCoachEvent(event_type=event_type, step_index=self.state.current_step_index)
        self.events.append(event)
        self._emit("event", event=event.to_dict())
        return event

    def _current_needs(self) -> Optional[StepNeeds]:
        module = self.state.active_module
        if module is None:
            return None
        return self.module_needs.get(module.slug, {}).get(self.state.current_step_index)

    @staticmethod
    def _requirements_met(needs: StepNeeds, labels: Set[str]) -> bool:
        return bool(needs.required) and all(item.lower() in labels for item in needs.required)

    def _reset_step_flags(self) -> None:
        self.step_flags = StepFlags()

    async def _persist(self) -> None:
        saved = await self.sessions.save_session(SessionState(
            module_id=self.module_id,
            session_token=self.session_token,
            current_step_index=self.state.current_step_index,
            live_coach_events=list(self.events),
            score=self.state.session_score,
        ))
        if not saved:
            logger.warning("⚠️ [LiveCoach] Progress kept in memory only")

    async def _announce(self, text: str) -> None:
        self._emit("announcement", text=text)
        if self.voice_enabled:
            await self.tts.speak(text, "system")

    # ==================== Vision ====================

    def on_detections(self, detections: List[DetectedObject]) -> None:
        """Proactive check, run on every vision tick."""
        self._last_labels = detected_labels(detections)
        if self.completed or "vision" in self.disabled_channels:
            return

        state = self.state
        if state.status is not CoachStatus.LISTENING or state.busy:
            return
        needs = self._current_needs()
        if needs is None:
            return

        labels = self._last_labels
        forbidden_seen = [item for item in needs.forbidden if item.lower() in labels]
        if forbidden_seen:
            self.timers.cancel_all()
            rule = None
            if not state.in_branch:
                rule = next((r for r in map(needs.branch_for, forbidden_seen) if r), None)
            if rule is not None:
                logger.info(f"🔀 [LiveCoach] '{rule.item}' detected, branching into '{rule.module}'")
                self.request_branch(rule.module)
            else:
                logger.info(f"🚫 [LiveCoach] Forbidden item detected: {', '.join(forbidden_seen)}")
                self.request_interaction(InteractionType.CORRECTION)
            return

        if self._requirements_met(needs, labels):
            self.timers.cancel(TimerPurpose.HINT)
            if not self.timers.is_armed(TimerPurpose.COMPLETION):
                self.timers.arm(TimerPurpose.COMPLETION, self.config.completion_delay, self._on_completion_timer)
            return

        self.timers.cancel(TimerPurpose.COMPLETION)
        if needs.required and not self.timers.is_armed(TimerPurpose.HINT):
            self.timers.arm(TimerPurpose.HINT, self.config.hint_delay, self._on_hint_timer)

    def _on_completion_timer(self) -> None:
        state = self.state
        if state.status is not CoachStatus.LISTENING or state.busy or self.completed:
            return
        needs = self._current_needs()
        if needs is None or not self._requirements_met(needs, self._last_labels):
            return
        logger.info(f"✅ [LiveCoach] Step {state.current_step_index + 1} complete, auto-advancing")
        follow_up = self._apply_advance()
        if follow_up is not None:
            self._spawn(follow_up)

    def _on_hint_timer(self) -> None:
        logger.info(f"💡 [LiveCoach] Required items still missing on step {self.state.current_step_index + 1}")
        self.request_interaction(InteractionType.HINT)

    # ==================== Speech ====================

    def handle_transcript(self, transcript: str, is_final: bool = True) -> SpeechIntent:
        """
        React to a speech recognition result.

        Advance commands take effect immediately; wake-phrase questions start an
        AI query in the background.
        """
        ignored = SpeechIntent(SpeechIntentType.NONE)
        if not is_final or self.completed:
            return ignored
        if "speech" in self.disabled_channels:
            logger.debug("🗣️ [LiveCoach] Speech channel disabled, transcript ignored")
            return ignored
        state = self.state
        if state.busy or state.status in (CoachStatus.THINKING, CoachStatus.SPEAKING, CoachStatus.INITIALIZING):
            return ignored

        intent = self.parser.parse(transcript)
        if intent.type is SpeechIntentType.ADVANCE:
            logger.info(f"🗣️ [LiveCoach] Advance command: '{transcript}'")
            follow_up = self._apply_advance()
            if follow_up is not None:
                self._spawn(follow_up)
        elif intent.type is SpeechIntentType.QUERY:
            logger.info(f"🗣️ [LiveCoach] Question: '{intent.query}'")
            self.request_interaction(InteractionType.QUERY, intent.query)
        return intent

    def ask(self, question: str) -> Optional[asyncio.Task]:
        """Explicit trainee question (typed or button-triggered)."""
        if not question.strip():
            return None
        return self.request_interaction(InteractionType.QUERY, question.strip())

    # ==================== Step advance ====================

    async def advance_step(self) -> None:
        """Manual step advance."""
        follow_up = self._apply_advance()
        if follow_up is not None:
            await follow_up

    def _apply_advance(self) -> Optional[Awaitable]:
        """
        Advance synchronously and return the async follow-up (persist or announce).

        Clears pending timers, appends a step_advance event, and either moves to the
        next step, ends the active branch, or completes the session.
        """
        state = self.state
        if self.completed or state.active_module is None:
            return None

        self.timers.cancel_all()
        self._record_event(CoachEventType.STEP_ADVANCE)

        if state.current_step_index + 1 >= len(state.active_module.steps):
            if state.in_branch:
                return self._end_branch()
            return self._complete_session()

        self.dispatch(AdvanceStep())
        if self.state.status is CoachStatus.IDLE:
            self.dispatch(SetStatus(CoachStatus.LISTENING))
        self._reset_step_flags()

        if self.state.in_branch:
            return None
        return self._persist()

    def _complete_session(self) -> Awaitable:
        self.completed = True
        self.dispatch(SetStatus(CoachStatus.IDLE))
        self._toast("success", "Module Complete!", "You have finished all the steps.")
        self._emit("navigate", path=f"/modules/{self.module_id}")
        logger.info(f"🏁 [LiveCoach] Module '{self.module_id}' complete, score {self.state.session_score}")
        return self._finish_session()

    async def _finish_session(self) -> None:
        await self.sessions.save_session(SessionState(
            module_id=self.module_id,
            session_token=self.session_token,
            is_completed=True,
            live_coach_events=list(self.events),
            score=self.state.session_score,
        ))
        if self.sampler is not None:
            await self.sampler.stop()

    # ==================== Branching ====================

    def request_branch(self, sub_module_slug: str) -> Optional[asyncio.Task]:
        """Start a detour into a remedial module unless another AI action is in flight."""
        state = self.state
        if state.busy or self.completed or state.active_module is None:
            logger.debug(f"🔀 [LiveCoach] Branch into '{sub_module_slug}' dropped (busy)")
            return None
        if state.in_branch:
            # Single return slot: never overwrite the saved main-module position
            logger.warning(f"⚠️ [LiveCoach] Already in a branch, ignoring branch into '{sub_module_slug}'")
            return None
        self.dispatch(BeginInteraction())
        return self._spawn(self._branch_pipeline(sub_module_slug))

    async def _branch_pipeline(self, sub_module_slug: str) -> bool:
        try:
            return await self._start_branch(sub_module_slug)
        finally:
            self.dispatch(EndInteraction())

    async def _start_branch(self, sub_module_slug: str) -> bool:
        self.tts.cancel()
        self.timers.cancel_all()
        main_module = self.state.active_module
        main_step_index = self.state.current_step_index

        try:
            sub_module = await self.modules.get_module(sub_module_slug)
        except Exception as e:
            logger.error(f"❌ [LiveCoach] Failed to fetch sub-module '{sub_module_slug}': {e}")
            sub_module = None

        if sub_module is None or not sub_module.steps:
            self._toast("error", "Detour Unavailable", f"Could not load the '{sub_module_slug}' module.")
            if not self.completed:
                self.dispatch(SetStatus(CoachStatus.LISTENING))
            return False

        if (
            self.completed
            or self.state.active_module is not main_module
            or self.state.current_step_index != main_step_index
        ):
            logger.info("🔀 [LiveCoach] Step changed while fetching sub-module, branch abandoned")
            return False

        self.dispatch(DecrementScore(self.config.branch_penalty))
        self.dispatch(StartBranch(
            sub_module=sub_module,
            main_module=main_module,
            main_step_index=main_step_index,
        ))
        self._main_chat = self._chat
        self._chat = self.gateway.start_chat(build_steps_context(sub_module), sub_module.transcript)
        self._reset_step_flags()
        self._toast("info", "Quick Detour", sub_module.title)

        await self._announce(
            f"Let's take a quick detour: {sub_module.title}. First, {sub_module.steps[0].title.lower()}."
        )
        if not self.completed:
            self.dispatch(SetStatus(CoachStatus.LISTENING))
        return True

    def _end_branch(self) -> Awaitable:
        self.dispatch(EndBranch())
        if self._main_chat is not None:
            self._chat, self._main_chat = self._main_chat, None
        if self.state.status is CoachStatus.IDLE:
            self.dispatch(SetStatus(CoachStatus.LISTENING))
        self._reset_step_flags()

        module: TrainingModule = self.state.active_module
        step = self.state.current_step
        logger.info(f"↩️ [LiveCoach] Branch finished, back to '{module.title}' step {self.state.current_step_index + 1}")
        return self._announce(f"Nice work. Back to {module.title}: {step.title}.")

    # ==================== AI interactions ====================

    def request_interaction(self, kind: InteractionType, query: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Start a hint, correction or query unless another AI action is in flight.

        Interjections (hint/correction) only start from `listening`; questions may
        also resume coaching from `idle`.
        """
        state = self.state
        if state.busy or self.completed or self._chat is None or state.current_step is None:
            logger.debug(f"🤖 [LiveCoach] {kind.value} dropped (busy or not ready)")
            return None
        if kind is not InteractionType.QUERY and state.status is not CoachStatus.LISTENING:
            return None
        self.dispatch(BeginInteraction())
        return self._spawn(self._interaction_pipeline(kind, query))

    async def _interaction_pipeline(self, kind: InteractionType, query: Optional[str]) -> Optional[str]:
        try:
            return await self._interact(kind, query)
        finally:
            self.dispatch(EndInteraction())

    async def _gather_context(self, module_slug: str, step_index: int, search_text: str):
        try:
            past_feedback = await self.feedback.get_past_feedback_for_step(module_slug, step_index)
        except Exception as e:
            logger.warning(f"⚠️ [LiveCoach] Past feedback unavailable: {e}")
            past_feedback = []
        try:
            similar_fixes = await self.feedback.find_similar_fixes(module_slug, step_index, search_text)
        except Exception as e:
            logger.warning(f"⚠️ [LiveCoach] Similar fixes unavailable: {e}")
            similar_fixes = []
        return past_feedback, similar_fixes

    async def _interact(self, kind: InteractionType, query: Optional[str]) -> Optional[str]:
        self.tts.cancel()
        module = self.state.active_module
        step_index = self.state.current_step_index
        step = self.state.current_step
        needs = self._current_needs()

        self._record_event(_INTERACTION_EVENT[kind])
        if kind is InteractionType.HINT:
            self.dispatch(DecrementScore(self.config.hint_penalty))
        elif kind is InteractionType.CORRECTION:
            self.dispatch(DecrementScore(self.config.correction_penalty))
        self.dispatch(SetStatus(_INTERACTION_STATUS[kind]))
        self.dispatch(ResetAiResponse())
        if kind is InteractionType.QUERY:
            self._toast("info", "Question Sent", f'"{query}"')

        past_feedback, similar_fixes = await self._gather_context(
            module.slug, step_index, query or f"{step.title} ({kind.value})"
        )
        prompt = build_live_coach_prompt(
            step_title=step.title,
            required_items=required_items_for(needs),
            interaction_type=kind,
            past_feedback=past_feedback,
            similar_fixes=similar_fixes,
            user_query=query,
            tagline=self.taglines.next(),
        )

        full_text = ""
        try:
            async for chunk in self.gateway.stream_reply(self._chat, prompt):
                if kind is InteractionType.QUERY and self.state.status is CoachStatus.THINKING:
                    self.dispatch(SetStatus(CoachStatus.TUTORING))
                if chunk.text:
                    full_text += chunk.text
                    self.dispatch(AppendAiResponse(chunk.text))
                    self._emit("chunk", text=chunk.text)
                if chunk.citations:
                    self._emit("citations", citations=chunk.citations)
        except Exception as e:
            logger.error(f"❌ [LiveCoach] AI {kind.value} failed: {e}")
            self.dispatch(SetStatus(CoachStatus.IDLE))
            self._toast(
                "error",
                "AI Error",
                "Sorry, I couldn't process that. Ask a question or move to the next step to continue.",
            )
            return None

        if full_text:
            await self._log_response(
                module.slug, step_index, interaction_user_prompt(kind, step.title, query), full_text
            )
            if self.voice_enabled:
                self.dispatch(SetStatus(CoachStatus.SPEAKING))
                await self.tts.speak(full_text, "coach")

        if not self.completed:
            self.dispatch(SetStatus(CoachStatus.LISTENING))
        return full_text

    async def _log_response(self, module_slug: str, step_index: int, user_prompt: str, ai_response: str) -> None:
        try:
            log_id = await self.feedback.log_ai_feedback(AIFeedbackLog(
                session_token=self.session_token,
                module_id=module_slug,
                step_index=step_index,
                user_prompt=user_prompt,
                ai_response=ai_response,
                feedback="bad",
            ))
        except Exception as e:
            logger.warning(f"⚠️ [LiveCoach] Could not log AI response: {e}")
            return
        self.step_flags.last_log_id = log_id
        self._emit("feedback_request", log_id=log_id)

    # ==================== Feedback ====================

    async def submit_feedback(self, log_id: str, fix_or_rating: str) -> bool:
        """
        Rate a logged response: "good", or the text of what actually worked.

        Each log can be rated once; repeat ratings return False.

        Raises:
            FeedbackServiceError: if the update could not be stored
        """
        if not fix_or_rating.strip():
            raise FeedbackServiceError("Feedback text is empty")
        if log_id in self._rated_logs:
            logger.info(f"📝 [LiveCoach] Log {log_id} already rated")
            return False
        await self.feedback.update_feedback_with_fix(log_id, fix_or_rating.strip())
        self._rated_logs.add(log_id)
        if log_id == self.step_flags.last_log_id:
            self.step_flags.feedback_given = True
        return True
