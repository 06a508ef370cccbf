"""
End-to-End Tests for the Live Coaching Loop

Tests the complete coach including:
- Remedial branch into a sub-module and return to the main module
- Auto-advance after required items are held for the grace period
- Hint escalation and LLM failure handling
- Score accounting across hints, corrections and branches
- Single in-flight AI interaction
"""

import asyncio

import pytest

from adapt_live_coach.coach_state import CoachStatus
from adapt_live_coach.errors import TrainingModuleNotFound
from adapt_live_coach.models import CoachEventType, DetectedObject
from adapt_live_coach.speech_commands import SpeechIntentType
from adapt_live_coach.timers import TimerPurpose


def seen(*labels):
    return [DetectedObject(label=label, confidence=0.9) for label in labels]


def event_types(controller):
    return [e.event_type for e in controller.events]


class TestRemedialBranch:
    """Phone in view on the first tire step triggers the distraction-safety detour."""

    @pytest.mark.asyncio
    async def test_phone_starts_branch_with_penalty(self, make_controller, sink):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.on_detections(seen("phone"))
        await controller.drain()

        state = controller.state
        assert state.active_module.slug == "distraction-safety"
        assert state.current_step_index == 0
        assert state.session_score == 85
        assert state.main_module_state.module.slug == "change-a-tire"
        assert state.main_module_state.step_index == 0
        assert state.status is CoachStatus.LISTENING
        assert not state.busy
        # Announcement spoken through native speech (no TTS client configured)
        assert any("detour" in text for text in sink.native)

    @pytest.mark.asyncio
    async def test_finishing_branch_returns_to_saved_step(self, make_controller):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        main_chat = controller._chat

        controller.on_detections(seen("phone"))
        await controller.drain()
        assert controller._chat is not main_chat

        controller.handle_transcript("done")
        controller.handle_transcript("Next.")
        await controller.drain()

        state = controller.state
        assert state.active_module.slug == "change-a-tire"
        assert state.current_step_index == 0
        assert state.main_module_state is None
        assert state.session_score == 85
        assert controller._chat is main_chat

    @pytest.mark.asyncio
    async def test_branch_rule_inside_branch_becomes_correction(self, make_controller):
        from adapt_live_coach.models import BranchRule, StepNeeds

        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.module_needs["distraction-safety"][0] = StepNeeds(
            forbidden=("phone",),
            branch_on=(BranchRule(item="phone", module="distraction-safety"),),
        )

        controller.on_detections(seen("phone"))
        await controller.drain()
        controller.on_detections(seen("phone"))
        await controller.drain()

        state = controller.state
        # Still the first branch, saved main position untouched
        assert state.active_module.slug == "distraction-safety"
        assert state.main_module_state.step_index == 0
        assert event_types(controller) == [CoachEventType.CORRECTION]
        assert state.session_score == 80

    @pytest.mark.asyncio
    async def test_missing_sub_module_leaves_state_untouched(self, make_controller):
        from adapt_live_coach.models import BranchRule, StepNeeds

        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.module_needs["change-a-tire"][0] = StepNeeds(
            required=("lug wrench",),
            forbidden=("phone",),
            branch_on=(BranchRule(item="phone", module="does-not-exist"),),
        )
        toasts = []
        controller.subscribe(lambda m: toasts.append(m) if m["type"] == "toast" else None)

        controller.on_detections(seen("phone"))
        await controller.drain()

        state = controller.state
        assert state.active_module.slug == "change-a-tire"
        assert state.main_module_state is None
        assert state.session_score == 100
        assert state.status is CoachStatus.LISTENING
        assert any(t["level"] == "error" for t in toasts)


class TestAutoAdvance:
    """Holding the required item for the grace period advances exactly once."""

    @pytest.mark.asyncio
    async def test_lug_wrench_held_advances_once(self, make_controller, scheduler, session_store):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        # 0.5 s vision ticks over 3.5 s
        for _ in range(8):
            controller.on_detections(seen("lug wrench"))
            scheduler.advance(0.5)
        await controller.drain()

        assert controller.state.current_step_index == 1
        assert event_types(controller) == [CoachEventType.STEP_ADVANCE]

        saved = await session_store.get_session("change-a-tire", "token-1")
        assert saved.current_step_index == 1
        assert saved.score == 100
        assert len(saved.live_coach_events) == 1

    @pytest.mark.asyncio
    async def test_item_put_down_cancels_completion(self, make_controller, scheduler):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.on_detections(seen("lug wrench"))
        scheduler.advance(2.0)
        controller.on_detections(seen())
        scheduler.advance(2.0)

        assert controller.state.current_step_index == 0
        assert not controller.timers.is_armed(TimerPurpose.COMPLETION)
        assert controller.timers.is_armed(TimerPurpose.HINT)

    @pytest.mark.asyncio
    async def test_step_without_required_items_never_advances(self, make_controller, scheduler):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.handle_transcript("next")
        controller.handle_transcript("next")
        await controller.drain()
        assert controller.state.current_step_index == 2  # no needs entry for "Swap the tire"

        controller.on_detections(seen("lug wrench"))
        scheduler.advance(10.0)

        assert controller.state.current_step_index == 2
        assert scheduler.pending == []


class TestHintsAndFailures:

    @pytest.mark.asyncio
    async def test_hint_after_seven_seconds(self, make_controller, scheduler, gateway, sink):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.on_detections(seen())
        scheduler.advance(6.9)
        assert gateway.prompts == []

        scheduler.advance(0.2)
        await controller.drain()

        assert len(gateway.prompts) == 1
        assert "does not detect the required item" in gateway.prompts[0]
        assert '"lug wrench"' in gateway.prompts[0]
        assert controller.state.session_score == 95
        assert controller.state.ai_response == gateway.default_reply
        assert controller.state.status is CoachStatus.LISTENING
        assert sink.native[-1] == gateway.default_reply

    @pytest.mark.asyncio
    async def test_llm_failure_goes_idle_without_retry(self, make_controller, scheduler, gateway):
        gateway.fail = True
        controller = make_controller()
        await controller.initialize(start_vision=False)
        toasts = []
        controller.subscribe(lambda m: toasts.append(m) if m["type"] == "toast" else None)

        controller.on_detections(seen())
        scheduler.advance(7.0)
        await controller.drain()

        assert controller.state.status is CoachStatus.IDLE
        assert event_types(controller) == [CoachEventType.HINT]
        assert controller.state.session_score == 95
        assert any(t["title"] == "AI Error" for t in toasts)

        # Proactive coaching stays paused while idle
        controller.on_detections(seen())
        scheduler.advance(30.0)
        await controller.drain()
        assert len(gateway.prompts) == 1

    @pytest.mark.asyncio
    async def test_question_resumes_from_idle(self, make_controller, scheduler, gateway):
        gateway.fail = True
        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.on_detections(seen())
        scheduler.advance(7.0)
        await controller.drain()
        assert controller.state.status is CoachStatus.IDLE

        gateway.fail = False
        controller.handle_transcript("Hey Adapt, where is the spare?")
        await controller.drain()

        assert controller.state.status is CoachStatus.LISTENING
        assert event_types(controller)[-1] is CoachEventType.TUTORING
        assert 'The user asked: "where is the spare?"' in gateway.prompts[-1]

    @pytest.mark.asyncio
    async def test_advance_from_idle_resumes_listening(self, make_controller, scheduler, gateway):
        gateway.fail = True
        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.on_detections(seen())
        scheduler.advance(7.0)
        await controller.drain()

        await controller.advance_step()

        assert controller.state.current_step_index == 1
        assert controller.state.status is CoachStatus.LISTENING


class TestScoring:

    @pytest.mark.asyncio
    async def test_score_formula(self, make_controller, scheduler):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        for _ in range(2):
            controller.on_detections(seen())
            scheduler.advance(7.0)
            await controller.drain()

        controller.on_detections(seen("phone"))
        await controller.drain()
        controller.handle_transcript("done")
        controller.handle_transcript("done")
        await controller.drain()
        assert controller.state.active_module.slug == "change-a-tire"

        controller.handle_transcript("next")
        await controller.drain()
        controller.on_detections(seen("jack", "phone"))
        await controller.drain()

        types = event_types(controller)
        assert types.count(CoachEventType.HINT) == 2
        assert types.count(CoachEventType.CORRECTION) == 1
        assert controller.state.session_score == 100 - 5 * 2 - 5 * 1 - 15 * 1

    @pytest.mark.asyncio
    async def test_score_never_below_zero(self, make_controller, scheduler):
        controller = make_controller(hint_penalty=40)
        await controller.initialize(start_vision=False)

        for _ in range(3):
            controller.on_detections(seen())
            scheduler.advance(7.0)
            await controller.drain()

        assert controller.state.session_score == 0


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_single_interaction_in_flight(self, make_controller, gateway):
        gateway.gate = asyncio.Event()
        controller = make_controller()
        await controller.initialize(start_vision=False)

        first = controller.ask("How tight should the nuts be?")
        assert first is not None
        assert controller.state.busy

        assert controller.ask("And which way do I turn?") is None
        controller.on_detections(seen("phone"))
        assert controller.handle_transcript("hey adapt are you there").type is SpeechIntentType.NONE

        gateway.gate.set()
        await controller.drain()

        assert len(gateway.prompts) == 1
        assert controller.state.active_module.slug == "change-a-tire"
        assert not controller.state.busy

    @pytest.mark.asyncio
    async def test_transcripts_ignored_while_thinking(self, make_controller, gateway):
        gateway.gate = asyncio.Event()
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.ask("What now?")
        await asyncio.sleep(0)
        assert controller.state.status is CoachStatus.THINKING

        controller.handle_transcript("done")
        gateway.gate.set()
        await controller.drain()

        assert controller.state.current_step_index == 0

    @pytest.mark.asyncio
    async def test_speech_advance_clears_timers(self, make_controller, scheduler, gateway):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.on_detections(seen())
        assert controller.timers.is_armed(TimerPurpose.HINT)

        controller.handle_transcript("Done!")
        scheduler.advance(10.0)
        await controller.drain()

        assert controller.state.current_step_index == 1
        assert not controller.timers.is_armed(TimerPurpose.HINT)
        assert gateway.prompts == []


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_unknown_module_raises(self, make_controller):
        controller = make_controller(module_id="no-such-module")
        with pytest.raises(TrainingModuleNotFound):
            await controller.initialize(start_vision=False)
        assert controller.state.status is CoachStatus.IDLE

    @pytest.mark.asyncio
    async def test_resume_restores_step_score_and_events(self, make_controller, scheduler):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.on_detections(seen())
        scheduler.advance(7.0)
        await controller.drain()
        await controller.advance_step()

        resumed = make_controller()
        await resumed.initialize(start_vision=False)

        assert resumed.state.current_step_index == 1
        assert resumed.state.session_score == 95
        assert [e.event_type for e in resumed.events] == [CoachEventType.HINT, CoachEventType.STEP_ADVANCE]

    @pytest.mark.asyncio
    async def test_completing_module_navigates_back(self, make_controller, session_store):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        messages = []
        controller.subscribe(messages.append)

        for _ in range(4):
            await controller.advance_step()

        assert controller.completed
        assert {"type": "navigate", "path": "/modules/change-a-tire"} in messages
        saved = await session_store.get_session("change-a-tire", "token-1")
        assert saved.is_completed
        assert len(saved.live_coach_events) == 4

        summary = await session_store.get_session_summary("change-a-tire", "token-1")
        assert set(summary.durations_per_step) == {0, 1, 2}

    @pytest.mark.asyncio
    async def test_vision_error_disables_proactive_checks(self, make_controller, scheduler, gateway):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        controller.on_detections(seen())

        assert controller.report_channel_error("vision", "Permission denied")
        assert not controller.report_channel_error("vision", "Permission denied")
        assert not controller.timers.is_armed(TimerPurpose.HINT)

        controller.on_detections(seen("phone"))
        scheduler.advance(10.0)
        await controller.drain()
        assert gateway.prompts == []

        # Speech and manual advance still work
        controller.handle_transcript("next")
        assert controller.state.current_step_index == 1
        await controller.drain()

    @pytest.mark.asyncio
    async def test_shutdown_stops_sampler_and_timers(self, make_controller):
        controller = make_controller(vision_interval=0.01)
        await controller.initialize()
        assert controller.sampler.running

        await asyncio.sleep(0.03)
        assert controller.timers.is_armed(TimerPurpose.HINT)

        await controller.shutdown()
        assert not controller.sampler.running
        assert not controller.timers.is_armed(TimerPurpose.HINT)

    @pytest.mark.asyncio
    async def test_resuming_completed_session_stays_complete(self, make_controller, session_store):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        for _ in range(4):
            await controller.advance_step()

        resumed = make_controller()
        await resumed.initialize()

        assert resumed.completed
        assert resumed.state.status is CoachStatus.IDLE
        assert not resumed.sampler.running

        await resumed.advance_step()
        saved = await session_store.get_session("change-a-tire", "token-1")
        assert len(saved.live_coach_events) == 4
        assert len(resumed.events) == 4


class TestFeedbackLoop:
    """Responses are logged as unhelpful until rated; fixes feed later prompts."""

    FIX = "Stand on the wrench handle to loosen the nut"

    @pytest.mark.asyncio
    async def test_response_logged_as_bad(self, make_controller, feedback_service):
        controller = make_controller()
        await controller.initialize(start_vision=False)
        requests = []
        controller.subscribe(lambda m: requests.append(m) if m["type"] == "feedback_request" else None)

        controller.ask("The nut is stuck, what now?")
        await controller.drain()

        log_id = controller.step_flags.last_log_id
        assert log_id is not None
        assert requests == [{"type": "feedback_request", "log_id": log_id}]

        logs = await feedback_service.get_past_feedback_for_step("change-a-tire", 0)
        assert [log.feedback for log in logs] == ["bad"]
        assert logs[0].ai_response == "Check the trunk for the lug wrench."

    @pytest.mark.asyncio
    async def test_fix_is_rated_once_and_reaches_next_prompt(self, make_controller, gateway):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.ask("The nut is stuck, what now?")
        await controller.drain()
        log_id = controller.step_flags.last_log_id

        assert await controller.submit_feedback(log_id, self.FIX)
        assert controller.step_flags.feedback_given
        assert not await controller.submit_feedback(log_id, "good")

        controller.ask("The nut won't loosen with the wrench")
        await controller.drain()

        assert self.FIX in gateway.prompts[-1]

    @pytest.mark.asyncio
    async def test_good_rating_keeps_response_out_of_prompt(self, make_controller, gateway, feedback_service):
        controller = make_controller()
        await controller.initialize(start_vision=False)

        controller.ask("Which way do I turn the wrench?")
        await controller.drain()
        assert await controller.submit_feedback(controller.step_flags.last_log_id, "good")

        logs = await feedback_service.get_past_feedback_for_step("change-a-tire", 0)
        assert logs[0].feedback == "good"

        controller.ask("And then?")
        await controller.drain()
        assert "Check the trunk for the lug wrench." not in gateway.prompts[-1]

    @pytest.mark.asyncio
    async def test_empty_feedback_rejected(self, make_controller):
        from adapt_live_coach.errors import FeedbackServiceError

        controller = make_controller()
        await controller.initialize(start_vision=False)

        with pytest.raises(FeedbackServiceError):
            await controller.submit_feedback("any-log", "   ")
