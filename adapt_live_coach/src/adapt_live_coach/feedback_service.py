"""
AI Feedback Loop

Logs every coach response, records the trainee's rating or "what actually
worked" fix, and retrieves similar past fixes for future prompts.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from adapt_live_coach.config import MATCH_COUNT, PAST_FEEDBACK_LIMIT, SIMILARITY_THRESHOLD
from adapt_live_coach.errors import FeedbackServiceError
from adapt_live_coach.models import AIFeedbackLog, SimilarFix

logger = logging.getLogger(__name__)

TABLE_NAME = "ai_feedback_logs"
MATCH_FUNCTION = "match_ai_feedback_fixes"


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)


class FeedbackService:
    """
    Feedback log persistence in the `ai_feedback_logs` table.

    Falls back to process memory when no Supabase client is configured; in that
    mode similarity search runs locally over the stored fix embeddings.
    """

    def __init__(self, supabase_client=None, embedder: Optional[Embedder] = None):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.embedder = embedder

        self._in_memory_logs: Dict[str, AIFeedbackLog] = {}
        self._in_memory_embeddings: Dict[str, List[float]] = {}

    @staticmethod
    def _row_to_log(item: Dict) -> AIFeedbackLog:
        return AIFeedbackLog(
            id=item.get("id"),
            session_token=item.get("session_token", ""),
            module_id=item.get("module_id", ""),
            step_index=item.get("step_index", 0),
            user_prompt=item.get("user_prompt") or "",
            ai_response=item.get("ai_response") or "",
            feedback=item.get("feedback"),
            user_fix_text=item.get("user_fix_text") or None,
            created_at=item.get("created_at"),
        )

    async def log_ai_feedback(self, log: AIFeedbackLog) -> str:
        """
        Store a new AI response log.

        Returns:
            The id of the new log entry

        Raises:
            FeedbackServiceError: if the row could not be written
        """
        if not self.use_supabase:
            log.id = log.id or str(uuid.uuid4())
            log.created_at = log.created_at or datetime.now(timezone.utc).isoformat()
            self._in_memory_logs[log.id] = log
            return log.id

        try:
            result = self.supabase.table(TABLE_NAME).insert({
                "session_token": log.session_token,
                "module_id": log.module_id,
                "step_index": log.step_index,
                "user_prompt": log.user_prompt,
                "ai_response": log.ai_response,
                "feedback": log.feedback,
            }).execute()
        except Exception as e:
            logger.error(f"❌ [FeedbackService] Error logging AI feedback: {e}")
            raise FeedbackServiceError(f"Could not save your feedback: {e}") from e

        if not result.data:
            raise FeedbackServiceError("Could not save your feedback: no row returned")
        return result.data[0]["id"]

    async def update_feedback_with_fix(self, log_id: str, fix_or_rating: str) -> None:
        """
        Record the trainee's reaction to a logged response.

        "good" marks the response helpful. Any other text is stored as the fix
        that actually worked, with an embedding for future similarity search.
        Embedding failures do not block the update.
        """
        update: Dict = {}
        embedding: Optional[List[float]] = None

        if fix_or_rating == "good":
            update["feedback"] = "good"
        else:
            update["user_fix_text"] = fix_or_rating
            if self.embedder is not None:
                try:
                    embedding = await self.embedder.embed(fix_or_rating)
                    update["fix_embedding"] = embedding
                except Exception as e:
                    logger.warning(f"⚠️ [FeedbackService] Could not generate embedding for user fix: {e}")

        if not self.use_supabase:
            log = self._in_memory_logs.get(log_id)
            if log is None:
                raise FeedbackServiceError(f"Could not save your explanation: unknown log {log_id}")
            if "feedback" in update:
                log.feedback = update["feedback"]
            if "user_fix_text" in update:
                log.user_fix_text = update["user_fix_text"]
            if embedding:
                self._in_memory_embeddings[log_id] = embedding
            return

        try:
            self.supabase.table(TABLE_NAME).update(update).eq("id", log_id).execute()
        except Exception as e:
            logger.error(f"❌ [FeedbackService] Error updating feedback with user fix: {e}")
            raise FeedbackServiceError(f"Could not save your explanation: {e}") from e

    async def get_past_feedback_for_step(self, module_id: str, step_index: int) -> List[AIFeedbackLog]:
        """Most recent feedback for a step. Returns [] on error."""
        if not self.use_supabase:
            logs = [
                log for log in self._in_memory_logs.values()
                if log.module_id == module_id and log.step_index == step_index
            ]
            logs.sort(key=lambda log: log.created_at or "", reverse=True)
            return logs[:PAST_FEEDBACK_LIMIT]

        try:
            result = self.supabase.table(TABLE_NAME) \
                .select("*") \
                .eq("module_id", module_id) \
                .eq("step_index", step_index) \
                .order("created_at", desc=True) \
                .limit(PAST_FEEDBACK_LIMIT) \
                .execute()
            return [self._row_to_log(item) for item in result.data or []]
        except Exception as e:
            logger.warning(f"⚠️ [FeedbackService] Error fetching past AI feedback: {e}")
            return []

    async def find_similar_fixes(self, module_id: str, step_index: int, user_query: str) -> List[SimilarFix]:
        """Trainee fixes similar to `user_query` for this step. Returns [] on error."""
        if not user_query.strip() or self.embedder is None:
            return []

        try:
            embedding = await self.embedder.embed(user_query)

            if not self.use_supabase:
                return self._match_in_memory(module_id, step_index, embedding)

            result = self.supabase.rpc(MATCH_FUNCTION, {
                "query_embedding": embedding,
                "p_module_id": module_id,
                "p_step_index": step_index,
                "match_threshold": SIMILARITY_THRESHOLD,
                "match_count": MATCH_COUNT,
            }).execute()

            return [
                SimilarFix(id=item["id"], user_fix_text=item["user_fix_text"], similarity=item["similarity"])
                for item in result.data or []
            ]
        except Exception as e:
            logger.warning(f"⚠️ [FeedbackService] Failed to find similar fixes from collective memory: {e}")
            return []

    def _match_in_memory(self, module_id: str, step_index: int, embedding: List[float]) -> List[SimilarFix]:
        matches = []
        for log_id, fix_embedding in self._in_memory_embeddings.items():
            log = self._in_memory_logs[log_id]
            if log.module_id != module_id or log.step_index != step_index or not log.user_fix_text:
                continue
            similarity = cosine_similarity(embedding, fix_embedding)
            if similarity >= SIMILARITY_THRESHOLD:
                matches.append(SimilarFix(id=log_id, user_fix_text=log.user_fix_text, similarity=similarity))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:MATCH_COUNT]
