"""
Live Coach Configuration

Reads tunables from the environment (and `.env`) into a single dataclass.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


# Score penalties
HINT_PENALTY = 5
CORRECTION_PENALTY = 5
BRANCH_PENALTY = 15

# Speech
DEFAULT_WAKE_PHRASE = "hey adapt"
ADVANCE_COMMANDS = ("done", "next", "okay next", "finished", "all set", "what's next")

# Feedback loop
SIMILARITY_THRESHOLD = 0.78
MATCH_COUNT = 3
PAST_FEEDBACK_LIMIT = 5


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class CoachConfig:
    """Runtime settings for a live coaching session."""
    vision_interval: float = 0.5
    detection_stale_after: float = 2.0
    min_detection_confidence: float = 0.5
    hint_delay: float = 7.0
    completion_delay: float = 3.0
    hint_penalty: int = HINT_PENALTY
    correction_penalty: int = CORRECTION_PENALTY
    branch_penalty: int = BRANCH_PENALTY
    wake_phrase: str = DEFAULT_WAKE_PHRASE
    voice_enabled: bool = True
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    fallback_model: str = "gpt-4o-mini"
    tts_model: str = "tts-1"
    embedding_model: str = "text-embedding-3-small"
    llm_retries: int = 2
    llm_retry_delay: float = 0.5
    idle_session_timeout: float = 120.0
    completed_session_linger: float = 10.0

    @classmethod
    def from_env(cls) -> "CoachConfig":
        load_dotenv()
        model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        return cls(
            vision_interval=_env_float("COACH_VISION_INTERVAL_SECONDS", 0.5),
            min_detection_confidence=_env_float("COACH_MIN_DETECTION_CONFIDENCE", 0.5),
            hint_delay=_env_float("COACH_HINT_DELAY_SECONDS", 7.0),
            completion_delay=_env_float("COACH_COMPLETION_DELAY_SECONDS", 3.0),
            wake_phrase=os.getenv("COACH_WAKE_PHRASE", DEFAULT_WAKE_PHRASE).lower(),
            voice_enabled=_env_bool("COACH_VOICE_ENABLED", True),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=model,
            fallback_model=os.getenv("OPENAI_FALLBACK_MODEL", model),
            tts_model=os.getenv("OPENAI_TTS_MODEL", "tts-1"),
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            llm_retries=int(os.getenv("COACH_LLM_RETRIES", "2")),
            idle_session_timeout=_env_float("COACH_IDLE_SESSION_TIMEOUT_SECONDS", 120.0),
            completed_session_linger=_env_float("COACH_COMPLETED_SESSION_LINGER_SECONDS", 10.0),
        )
