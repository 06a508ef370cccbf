"""
Unit Tests for Session Persistence

Covers the in-memory mode and the Supabase upsert path with a fake client.
"""

import pytest

from adapt_live_coach.models import CoachEventType, LiveCoachEvent, SessionState
from adapt_live_coach.session_store import SessionStore


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for a supabase table query."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.filters = {}

    def select(self, *args):
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def upsert(self, row, on_conflict=None):
        self.client.upserts.append((self.table, row, on_conflict))
        return self

    def execute(self):
        if self.client.fail:
            raise ConnectionError("database unreachable")
        return FakeResult(self.client.rows)


class FakeSupabase:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.upserts = []

    def table(self, name):
        return FakeQuery(self, name)


def advance(step, ts):
    return LiveCoachEvent(CoachEventType.STEP_ADVANCE, step, timestamp=ts)


class TestInMemorySessionStore:

    @pytest.fixture
    def store(self):
        return SessionStore()

    @pytest.mark.asyncio
    async def test_new_session_is_none(self, store):
        assert await store.get_session("change-a-tire", "abc") is None

    @pytest.mark.asyncio
    async def test_partial_saves_merge(self, store):
        await store.save_session(SessionState("change-a-tire", "abc", current_step_index=2, score=90))
        await store.save_session(SessionState("change-a-tire", "abc", is_completed=True))

        session = await store.get_session("change-a-tire", "abc")
        assert session.current_step_index == 2
        assert session.score == 90
        assert session.is_completed

    @pytest.mark.asyncio
    async def test_sessions_keyed_by_module_and_token(self, store):
        await store.save_session(SessionState("change-a-tire", "abc", current_step_index=3))
        assert await store.get_session("sandwich-making", "abc") is None

    @pytest.mark.asyncio
    async def test_summary_durations(self, store):
        events = [
            advance(0, 1_000),
            LiveCoachEvent(CoachEventType.HINT, 1, timestamp=4_000),
            advance(1, 11_000),
            advance(2, 16_000),
        ]
        await store.save_session(SessionState("change-a-tire", "abc", live_coach_events=events))

        summary = await store.get_session_summary("change-a-tire", "abc")
        assert summary.durations_per_step == {0: 10_000, 1: 5_000}
        assert summary.started_at == 1_000
        assert summary.ended_at == 16_000

    @pytest.mark.asyncio
    async def test_summary_missing_session(self, store):
        assert await store.get_session_summary("change-a-tire", "nope") is None


class TestSupabaseSessionStore:

    def test_session_to_dict_omits_unset_fields(self):
        row = SessionStore().session_to_dict(SessionState("change-a-tire", "abc", current_step_index=1))
        assert row == {"module_id": "change-a-tire", "session_token": "abc", "current_step_index": 1}

    @pytest.mark.asyncio
    async def test_upsert_on_module_and_token(self):
        client = FakeSupabase()
        store = SessionStore(supabase_client=client)

        saved = await store.save_session(SessionState(
            "change-a-tire", "abc", current_step_index=1, live_coach_events=[advance(0, 5)], score=95,
        ))

        assert saved
        table, row, on_conflict = client.upserts[0]
        assert table == "training_sessions"
        assert on_conflict == "module_id,session_token"
        assert row["live_coach_events"] == [{"eventType": "step_advance", "stepIndex": 0, "timestamp": 5}]
        assert row["score"] == 95
        assert "updated_at" in row

    @pytest.mark.asyncio
    async def test_load_row(self):
        client = FakeSupabase(rows=[{
            "module_id": "change-a-tire",
            "session_token": "abc",
            "current_step_index": 2,
            "is_completed": False,
            "live_coach_events": [{"eventType": "hint", "stepIndex": 2, "timestamp": 9}],
            "score": 80,
        }])
        session = await SessionStore(supabase_client=client).get_session("change-a-tire", "abc")
        assert session.current_step_index == 2
        assert session.live_coach_events[0].event_type is CoachEventType.HINT
        assert session.score == 80

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_memory(self):
        client = FakeSupabase(fail=True)
        store = SessionStore(supabase_client=client)

        saved = await store.save_session(SessionState("change-a-tire", "abc", current_step_index=3))
        assert not saved

        session = await store.get_session("change-a-tire", "abc")
        assert session.current_step_index == 3
