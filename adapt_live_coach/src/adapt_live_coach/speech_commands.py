"""
Speech Command Filter

Classifies final transcripts from the client's speech recognizer into an
advance-step command, a wake-phrase query, or nothing.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from adapt_live_coach.config import ADVANCE_COMMANDS, DEFAULT_WAKE_PHRASE


class SpeechIntentType(Enum):
    NONE = "none"
    ADVANCE = "advance"
    QUERY = "query"


@dataclass(frozen=True)
class SpeechIntent:
    type: SpeechIntentType
    query: Optional[str] = None


_IGNORED = SpeechIntent(SpeechIntentType.NONE)
_TRAILING_PUNCTUATION = re.compile(r"[\s.,!?]+$")


def _normalize(text: str) -> str:
    text = text.replace("’", "'").strip().lower()
    text = _TRAILING_PUNCTUATION.sub("", text)
    return re.sub(r"\s+", " ", text)


class SpeechCommandParser:
    """Recognizes advance commands and wake-phrase queries."""

    def __init__(
        self,
        wake_phrase: str = DEFAULT_WAKE_PHRASE,
        advance_commands: Iterable[str] = ADVANCE_COMMANDS,
    ):
        self.wake_phrase = _normalize(wake_phrase)
        self.advance_commands = frozenset(_normalize(c) for c in advance_commands)
        words = [re.escape(w) for w in self.wake_phrase.split()]
        self._wake_pattern = re.compile(
            r"^\s*" + r"[\s,]+".join(words) + r"\b[\s,.!?]*(.*)$",
            re.IGNORECASE | re.DOTALL,
        )

    def parse(self, transcript: str) -> SpeechIntent:
        normalized = _normalize(transcript)
        if not normalized:
            return _IGNORED

        if normalized in self.advance_commands:
            return SpeechIntent(SpeechIntentType.ADVANCE)

        # Match against the raw transcript to keep the trainee's casing
        match = self._wake_pattern.match(transcript)
        if match:
            query = match.group(1).strip()
            if query:
                return SpeechIntent(SpeechIntentType.QUERY, query=query)

        return _IGNORED
