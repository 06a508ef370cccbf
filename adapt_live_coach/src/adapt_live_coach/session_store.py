"""
Session Store for Live Coach Persistence

Persists the live coach's progress (current step, score, event timeline) per
session token using Supabase, with an in-memory fallback.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional, Tuple

from adapt_live_coach.models import (
    CoachEventType,
    LiveCoachEvent,
    SessionState,
    SessionSummary,
)

logger = logging.getLogger(__name__)

TABLE_NAME = "training_sessions"


class SessionStore:
    """
    Stores and retrieves live coaching sessions keyed by (module_id, session_token).

    Reloads of the coaching page resume from the stored step and score.
    """

    def __init__(self, supabase_client=None):
        """
        Initialize SessionStore.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None

        # Always initialize in-memory fallback (used in error cases)
        self._in_memory_sessions: Dict[Tuple[str, str], SessionState] = {}

    def session_to_dict(self, session: SessionState) -> Dict[str, Any]:
        """
        Convert SessionState to a row for upsert.

        Fields left as None are omitted so they don't overwrite stored values.
        """
        row = {
            "module_id": session.module_id,
            "session_token": session.session_token,
            "current_step_index": session.current_step_index,
            "is_completed": session.is_completed,
            "live_coach_events": (
                [e.to_dict() for e in session.live_coach_events]
                if session.live_coach_events is not None
                else None
            ),
            "score": session.score,
        }
        return {k: v for k, v in row.items() if v is not None}

    def dict_to_session(self, data: Dict[str, Any]) -> SessionState:
        return SessionState(
            module_id=data["module_id"],
            session_token=data["session_token"],
            current_step_index=data.get("current_step_index") or 0,
            is_completed=bool(data.get("is_completed")),
            live_coach_events=[LiveCoachEvent.from_dict(e) for e in data.get("live_coach_events") or []],
            score=data.get("score"),
        )

    def _merge_in_memory(self, partial: SessionState) -> None:
        key = (partial.module_id, partial.session_token)
        existing = self._in_memory_sessions.get(key)
        if existing is None:
            existing = SessionState(
                module_id=partial.module_id,
                session_token=partial.session_token,
                current_step_index=0,
                is_completed=False,
                live_coach_events=[],
            )
        for name in ("current_step_index", "is_completed", "live_coach_events", "score"):
            value = getattr(partial, name)
            if value is not None:
                setattr(existing, name, list(value) if name == "live_coach_events" else value)
        self._in_memory_sessions[key] = existing

    async def get_session(self, module_id: str, session_token: str) -> Optional[SessionState]:
        """
        Load a session.

        Args:
            module_id: Module slug
            session_token: Client-generated session token

        Returns:
            SessionState or None if this is a new session
        """
        key = (module_id, session_token)
        if not self.use_supabase:
            return self._in_memory_sessions.get(key)

        try:
            result = self.supabase.table(TABLE_NAME) \
                .select("*") \
                .eq("module_id", module_id) \
                .eq("session_token", session_token) \
                .execute()

            if result.data:
                return self.dict_to_session(result.data[0])
            return None

        except Exception as e:
            logger.warning(f"⚠️ [SessionStore] Error loading session from database: {e}")
            return self._in_memory_sessions.get(key)

    async def save_session(self, partial: SessionState) -> bool:
        """
        Upsert the provided fields of a session.

        Returns:
            True if saved to the database (or memory in fallback mode), False on error
        """
        if not self.use_supabase:
            self._merge_in_memory(partial)
            return True

        try:
            row = self.session_to_dict(partial)
            row["updated_at"] = datetime.now(timezone.utc).isoformat()
            self.supabase.table(TABLE_NAME) \
                .upsert(row, on_conflict="module_id,session_token") \
                .execute()
            return True

        except Exception as e:
            logger.warning(f"⚠️ [SessionStore] Error saving session to database: {e}")
            self._merge_in_memory(partial)
            return False

    async def get_session_summary(self, module_id: str, session_token: str) -> Optional[SessionSummary]:
        """
        Fetch a session and derive time spent per step.

        Duration of step i is the gap between consecutive step_advance events. The
        final step has no closing event and is not included.
        """
        session = await self.get_session(module_id, session_token)
        if session is None:
            return None

        events = sorted(session.live_coach_events or [], key=lambda e: e.timestamp)
        advances = [e for e in events if e.event_type is CoachEventType.STEP_ADVANCE]

        durations: Dict[int, int] = {}
        for current, following in zip(advances, advances[1:]):
            durations[current.step_index] = (
                durations.get(current.step_index, 0) + following.timestamp - current.timestamp
            )

        return SessionSummary(
            session=session,
            started_at=events[0].timestamp if events else 0,
            ended_at=events[-1].timestamp if events else 0,
            durations_per_step=durations,
        )
