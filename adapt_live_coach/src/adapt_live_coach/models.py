"""
Live Coach Data Models

Dataclasses shared by the coach state machine, persistence and feedback services.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ModuleStep:
    """One step of a training module."""
    title: str
    description: str
    checkpoint: Optional[str] = None


@dataclass(frozen=True)
class TrainingModule:
    """A step-by-step training module (top-level or remedial)."""
    slug: str
    title: str
    steps: Tuple[ModuleStep, ...] = ()
    transcript: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "TrainingModule":
        steps = tuple(
            ModuleStep(
                title=s["title"],
                description=s.get("description", ""),
                checkpoint=s.get("checkpoint"),
            )
            for s in data.get("steps") or []
        )
        return cls(
            slug=data["slug"],
            title=data["title"],
            steps=steps,
            transcript=data.get("transcript"),
        )


@dataclass(frozen=True)
class DetectedObject:
    """A single detection from the vision model."""
    label: str
    confidence: float = 1.0
    bbox: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)  # xMin, yMin, xMax, yMax (fractions)


@dataclass(frozen=True)
class BranchRule:
    """Redirect into a remedial module when `item` is detected."""
    item: str
    module: str


@dataclass(frozen=True)
class StepNeeds:
    """Object labels that satisfy, violate, or redirect a step."""
    required: Tuple[str, ...] = ()
    forbidden: Tuple[str, ...] = ()
    branch_on: Tuple[BranchRule, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict) -> "StepNeeds":
        return cls(
            required=tuple(data.get("required") or []),
            forbidden=tuple(data.get("forbidden") or []),
            branch_on=tuple(
                BranchRule(item=r["item"], module=r["module"])
                for r in data.get("branch_on") or data.get("branchOn") or []
            ),
        )

    def branch_for(self, item: str) -> Optional[BranchRule]:
        for rule in self.branch_on:
            if rule.item.lower() == item.lower():
                return rule
        return None


# module slug -> step index -> needs
ModuleNeeds = Dict[str, Dict[int, StepNeeds]]


class CoachEventType(Enum):
    """Kinds of entries in the live coach event timeline."""
    STEP_ADVANCE = "step_advance"
    HINT = "hint"
    CORRECTION = "correction"
    TUTORING = "tutoring"


@dataclass(frozen=True)
class LiveCoachEvent:
    """Append-only timeline entry, persisted with the session."""
    event_type: CoachEventType
    step_index: int
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict:
        return {
            "eventType": self.event_type.value,
            "stepIndex": self.step_index,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "LiveCoachEvent":
        return cls(
            event_type=CoachEventType(data["eventType"]),
            step_index=int(data["stepIndex"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass
class AIFeedbackLog:
    """One row per AI interjection or query response."""
    session_token: str
    module_id: str
    step_index: int
    user_prompt: str
    ai_response: str
    feedback: Optional[str] = None  # "good", "bad" or None
    user_fix_text: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class SimilarFix:
    """A trainee-submitted fix returned by similarity search."""
    id: str
    user_fix_text: str
    similarity: float


@dataclass
class SessionState:
    """Persisted snapshot of a live coaching run."""
    module_id: str
    session_token: str
    current_step_index: Optional[int] = None
    is_completed: Optional[bool] = None
    live_coach_events: Optional[List[LiveCoachEvent]] = None
    score: Optional[int] = None


@dataclass
class SessionSummary:
    """Session snapshot plus derived timing analytics."""
    session: SessionState
    started_at: int
    ended_at: int
    durations_per_step: Dict[int, int] = field(default_factory=dict)
