"""
LLM Session Gateway

Chat sessions seeded with module context, streamed replies with retry, a
non-streaming fallback provider, and text embeddings for the feedback loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from adapt_live_coach.errors import LLMUnavailableError
from adapt_live_coach.prompt_context import build_chat_tutor_instruction

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 20


@dataclass
class StreamChunk:
    """Incremental piece of a streamed reply."""
    text: str
    citations: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ChatSession:
    """A chat seeded with a system instruction; keeps a rolling history."""
    system_instruction: str
    history: List[Dict[str, str]] = field(default_factory=list)

    def messages_for(self, prompt: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_instruction}]
        messages.extend(self.history[-HISTORY_WINDOW:])
        messages.append({"role": "user", "content": prompt})
        return messages

    def record(self, prompt: str, reply: str) -> None:
        self.history.append({"role": "user", "content": prompt})
        self.history.append({"role": "assistant", "content": reply})
        if len(self.history) > HISTORY_WINDOW:
            del self.history[:-HISTORY_WINDOW]


def _citations_from(delta) -> List[Dict[str, str]]:
    citations = []
    for annotation in getattr(delta, "annotations", None) or []:
        url_citation = getattr(annotation, "url_citation", None)
        if url_citation is not None:
            citations.append({"uri": url_citation.url, "title": url_citation.title})
    return citations


class LLMGateway:
    """Opens coach chat sessions and streams replies from OpenAI."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = "gpt-4o-mini",
        fallback_model: Optional[str] = None,
        retry_delay: float = 0.5,
        retries: int = 2,
        api_key: Optional[str] = None,
    ):
        if client is None:
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.fallback_model = fallback_model or model
        self.retry_delay = retry_delay
        self.retries = max(1, retries)

    def start_chat(
        self,
        steps_context: str,
        full_transcript: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> ChatSession:
        return ChatSession(
            system_instruction=build_chat_tutor_instruction(steps_context, full_transcript),
            history=list(history or []),
        )

    async def send_message_with_retry(self, session: ChatSession, prompt: str, retries: Optional[int] = None):
        """Open a streaming completion, retrying the request with linear backoff."""
        messages = session.messages_for(prompt)
        retries = retries or self.retries
        for attempt in range(1, retries + 1):
            try:
                return await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    stream=True,
                    max_tokens=300,
                    temperature=0.7,
                )
            except Exception as e:
                logger.warning(f"⚠️ [LLMGateway] Stream attempt {attempt} failed: {e}")
                if attempt == retries:
                    logger.error("❌ [LLMGateway] All retry attempts failed for streaming request")
                    raise
                await asyncio.sleep(self.retry_delay * attempt)

    async def get_fallback_response(self, session: ChatSession, prompt: str) -> str:
        logger.info("🔁 [LLMGateway] Attempting fallback AI provider...")
        try:
            response = await self.client.chat.completions.create(
                model=self.fallback_model,
                messages=session.messages_for(prompt),
                max_tokens=300,
                temperature=0.7,
            )
        except Exception as e:
            logger.error(f"❌ [LLMGateway] Fallback AI provider also failed: {e}")
            raise LLMUnavailableError(
                "Sorry, the AI tutor is currently unavailable. Please try again later."
            ) from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise LLMUnavailableError("Fallback AI provider returned an empty response.")
        return text

    async def stream_reply(self, session: ChatSession, prompt: str) -> AsyncIterator[StreamChunk]:
        """
        Stream a reply for `prompt`.

        If the primary stream cannot be opened, the fallback provider answers in a
        single chunk. Raises LLMUnavailableError when both fail. Once text has been
        yielded, a mid-stream failure propagates as-is.
        """
        try:
            stream = await self.send_message_with_retry(session, prompt)
        except Exception:
            text = await self.get_fallback_response(session, prompt)
            session.record(prompt, text)
            yield StreamChunk(text=text)
            return

        full_text = ""
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta is None:
                continue
            citations = _citations_from(delta)
            if delta.content or citations:
                full_text += delta.content or ""
                yield StreamChunk(text=delta.content or "", citations=citations)
        session.record(prompt, full_text)


class OpenAIEmbedder:
    """Text embeddings for collective-memory similarity search."""

    def __init__(self, client: AsyncOpenAI, model: str = "text-embedding-3-small"):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)
