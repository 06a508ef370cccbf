"""
Text-to-Speech

Synthesises coach replies with OpenAI speech, caches the audio, and hands it to
an AudioSink for playback on the trainee's device. If synthesis fails, the sink
is asked to use the browser's native speech synthesis instead.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 50

# Character persona -> OpenAI voice
VOICE_MAP = {
    "system": "alloy",
    "coach": "nova",
    "stephen": "onyx",
    "sunny": "shimmer",
    "janice": "fable",
    "default": "alloy",
}


def get_voice_for_character(character: str = "default") -> str:
    return VOICE_MAP.get(character.lower(), VOICE_MAP["default"])


class AudioSink(ABC):
    """Plays speech on the trainee's device."""

    @abstractmethod
    async def play_audio(self, audio: bytes, text: str) -> None:
        """Play synthesised audio; returns when playback has finished."""

    @abstractmethod
    async def speak_native(self, text: str) -> None:
        """Ask the device to speak `text` with its own speech synthesis."""

    def stop(self) -> None:
        """Stop whatever is currently playing."""


class TTSService:
    """One utterance at a time, with an LRU cache of synthesised audio."""

    def __init__(self, sink: AudioSink, client: Optional[AsyncOpenAI] = None, model: str = "tts-1"):
        self.sink = sink
        self.client = client
        self.model = model
        self._cache: "OrderedDict[str, bytes]" = OrderedDict()
        self._playback: Optional[asyncio.Task] = None

    async def _synthesize(self, text: str, voice: str) -> bytes:
        if self.client is None:
            raise RuntimeError("No TTS client configured")
        response = await self.client.audio.speech.create(model=self.model, voice=voice, input=text)
        return response.content

    def _remember(self, key: str, audio: bytes) -> None:
        if key in self._cache:
            self._cache.move_to_end(key)
        elif len(self._cache) >= MAX_CACHE_SIZE:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug(f"🔊 [TTSService] Cache full, evicted oldest entry: {evicted[:40]}")
        self._cache[key] = audio

    async def speak(self, text: str, character: str = "system") -> None:
        """Speak `text`, returning once playback ends or is cancelled."""
        if not text:
            return
        voice = get_voice_for_character(character)
        cache_key = f"{voice}-{text}"

        audio = self._cache.get(cache_key)
        if audio is not None:
            self._cache.move_to_end(cache_key)
            await self._play(self.sink.play_audio(audio, text))
            return

        try:
            audio = await self._synthesize(text, voice)
            if not audio:
                raise RuntimeError("TTS API returned no audio")
        except Exception as e:
            logger.warning(f"⚠️ [TTSService] High-quality TTS failed: {e}. Falling back to native speech.")
            await self._play(self.sink.speak_native(text))
            return

        self._remember(cache_key, audio)
        await self._play(self.sink.play_audio(audio, text))

    async def _play(self, playback) -> None:
        self.cancel()
        task = asyncio.ensure_future(playback)
        self._playback = task
        # asyncio.wait does not propagate our own cancellation into the playback task
        await asyncio.wait({task})
        if self._playback is task:
            self._playback = None
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ [TTSService] Audio playback error: {error}")

    def cancel(self) -> None:
        """Stop any ongoing speech."""
        if self._playback is not None and not self._playback.done():
            self._playback.cancel()
            self.sink.stop()
        self._playback = None

    @property
    def speaking(self) -> bool:
        return self._playback is not None and not self._playback.done()
