"""Adapt live coach: per-step tutoring loop driven by vision, speech and an LLM."""
from adapt_live_coach.coach_controller import LiveCoachController
from adapt_live_coach.coach_state import CoachState, CoachStatus, coach_reducer
from adapt_live_coach.config import CoachConfig
from adapt_live_coach.errors import (
    ChannelUnavailableError,
    CoachError,
    FeedbackServiceError,
    LLMUnavailableError,
    TrainingModuleNotFound,
)

__all__ = [
    "LiveCoachController",
    "CoachState",
    "CoachStatus",
    "coach_reducer",
    "CoachConfig",
    "CoachError",
    "TrainingModuleNotFound",
    "LLMUnavailableError",
    "FeedbackServiceError",
    "ChannelUnavailableError",
]
