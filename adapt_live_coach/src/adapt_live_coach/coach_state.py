"""
Live Coach State Machine

Explicit state structure and the pure reducer that moves it between states.

Status flow:
1. initializing - module, session and chat are being set up
2. listening - waiting on vision ticks, speech and timers
3. hinting / correcting / tutoring / thinking - one AI interaction in flight
4. branching - detour into a remedial sub-module is starting
5. speaking - the coach is reading a response aloud
6. idle - proactive coaching paused until the trainee acts

Side effects (timers, network, speech) live in the controller; this module only
computes the next state.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from adapt_live_coach.models import TrainingModule


MAX_SCORE = 100


class CoachStatus(Enum):
    """Coach statuses. Exactly one holds at any instant."""
    INITIALIZING = "initializing"
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    HINTING = "hinting"
    CORRECTING = "correcting"
    TUTORING = "tutoring"
    BRANCHING = "branching"


@dataclass(frozen=True)
class MainModuleState:
    """Return point saved while a branch is active."""
    module: TrainingModule
    step_index: int


@dataclass(frozen=True)
class CoachState:
    """Single source of truth for the coach's operational state."""
    status: CoachStatus = CoachStatus.INITIALIZING
    ai_response: str = ""
    current_step_index: int = 0
    session_score: int = MAX_SCORE
    active_module: Optional[TrainingModule] = None
    main_module_state: Optional[MainModuleState] = None
    busy: bool = False  # an AI interaction or branch start is in flight

    @property
    def in_branch(self) -> bool:
        return self.main_module_state is not None

    @property
    def current_step(self):
        if self.active_module is None:
            return None
        if 0 <= self.current_step_index < len(self.active_module.steps):
            return self.active_module.steps[self.current_step_index]
        return None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "aiResponse": self.ai_response,
            "currentStepIndex": self.current_step_index,
            "sessionScore": self.session_score,
            "activeModule": self.active_module.slug if self.active_module else None,
            "mainModule": (
                {
                    "module": self.main_module_state.module.slug,
                    "stepIndex": self.main_module_state.step_index,
                }
                if self.main_module_state
                else None
            ),
            "busy": self.busy,
        }


# ==================== Actions ====================

@dataclass(frozen=True)
class InitializeSession:
    step_index: int
    module: TrainingModule
    score: Optional[int] = None


@dataclass(frozen=True)
class SetStatus:
    status: CoachStatus


@dataclass(frozen=True)
class SetAiResponse:
    text: str


@dataclass(frozen=True)
class ResetAiResponse:
    pass


@dataclass(frozen=True)
class AppendAiResponse:
    text: str


@dataclass(frozen=True)
class AdvanceStep:
    pass


@dataclass(frozen=True)
class SetStepIndex:
    step_index: int


@dataclass(frozen=True)
class DecrementScore:
    amount: int


@dataclass(frozen=True)
class StartBranch:
    sub_module: TrainingModule
    main_module: TrainingModule
    main_step_index: int


@dataclass(frozen=True)
class EndBranch:
    pass


@dataclass(frozen=True)
class BeginInteraction:
    pass


@dataclass(frozen=True)
class EndInteraction:
    pass


@dataclass(frozen=True)
class ResetSession:
    pass


CoachAction = Union[
    InitializeSession,
    SetStatus,
    SetAiResponse,
    ResetAiResponse,
    AppendAiResponse,
    AdvanceStep,
    SetStepIndex,
    DecrementScore,
    StartBranch,
    EndBranch,
    BeginInteraction,
    EndInteraction,
    ResetSession,
]


def _clamp_score(score: int) -> int:
    return max(0, min(MAX_SCORE, score))


def coach_reducer(state: CoachState, action: CoachAction) -> CoachState:
    """Return the state that results from applying `action` to `state`."""
    if isinstance(action, InitializeSession):
        return replace(
            state,
            current_step_index=action.step_index,
            session_score=_clamp_score(action.score) if action.score is not None else state.session_score,
            active_module=action.module,
        )
    if isinstance(action, SetStatus):
        return replace(state, status=action.status)
    if isinstance(action, SetAiResponse):
        return replace(state, ai_response=action.text)
    if isinstance(action, ResetAiResponse):
        return replace(state, ai_response="")
    if isinstance(action, AppendAiResponse):
        return replace(state, ai_response=state.ai_response + action.text)
    if isinstance(action, AdvanceStep):
        if state.active_module is None:
            return state
        return replace(state, current_step_index=state.current_step_index + 1)
    if isinstance(action, SetStepIndex):
        return replace(state, current_step_index=action.step_index)
    if isinstance(action, DecrementScore):
        return replace(state, session_score=max(0, state.session_score - action.amount))
    if isinstance(action, StartBranch):
        return replace(
            state,
            status=CoachStatus.BRANCHING,
            main_module_state=MainModuleState(action.main_module, action.main_step_index),
            active_module=action.sub_module,
            current_step_index=0,
        )
    if isinstance(action, EndBranch):
        if state.main_module_state is None:
            return state
        return replace(
            state,
            active_module=state.main_module_state.module,
            current_step_index=state.main_module_state.step_index,
            main_module_state=None,
        )
    if isinstance(action, BeginInteraction):
        return replace(state, busy=True)
    if isinstance(action, EndInteraction):
        return replace(state, busy=False)
    if isinstance(action, ResetSession):
        return replace(
            state,
            current_step_index=0,
            session_score=MAX_SCORE,
            ai_response="",
            main_module_state=None,
            active_module=(
                state.main_module_state.module if state.main_module_state else state.active_module
            ),
        )
    return state
