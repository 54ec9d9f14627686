"""Post-processing of final transcripts.

Two paths:
- ``apply_simple``: deterministic cleanup, pure and fast, never fails
- ``apply_with_ai``: LLM rewrite streamed back through a callback, falling
  back to ``apply_simple`` when the model is unavailable, fails or returns
  nothing
"""

import asyncio
import json
import re
import time
import unicodedata
from collections.abc import AsyncIterator, Callable
from typing import Any

import aiohttp

from ..core.config import ConfigLoader, setup_logging
from .types import PostProcessError, PostProcessResult

logger = setup_logging(__name__, log_filename="recognition.txt")

StreamingUpdate = Callable[[str], None]

TRAILING_PUNCTUATION = ".,;:!?。，；：！？、…"

_WHITESPACE_RE = re.compile(r"\s+")


def _is_emoji(char: str) -> bool:
    if char in "\u200d\ufe0f\u20e3":
        return True
    return unicodedata.category(char) == "So" or 0x1F000 <= ord(char) <= 0x1FAFF


def trim_trailing_punctuation(text: str) -> str:
    return text.rstrip(TRAILING_PUNCTUATION + " ")


def trim_trailing_emoji(text: str) -> str:
    end = len(text)
    while end > 0 and (_is_emoji(text[end - 1]) or text[end - 1].isspace()):
        end -= 1
    return text[:end]


def apply_replacements(text: str, replacements: dict[str, str]) -> str:
    """Apply phrase replacements, longest phrase first."""
    for phrase in sorted(replacements, key=len, reverse=True):
        if phrase:
            text = text.replace(phrase, replacements[phrase])
    return text


def simple_cleanup(
    text: str,
    trim_punctuation: bool = True,
    trim_emoji: bool = False,
    replacements: dict[str, str] | None = None,
) -> str:
    """Deterministic cleanup.

    Collapses whitespace runs to one space, strips both ends, then trims
    trailing sentence punctuation and emoji (when enabled) and applies
    phrase replacements. ``"  Hi there.  "`` becomes ``"Hi there"``.
    """
    cleaned = _WHITESPACE_RE.sub(" ", text or "").strip()
    if trim_emoji:
        cleaned = trim_trailing_emoji(cleaned)
    if trim_punctuation:
        cleaned = trim_trailing_punctuation(cleaned)
    if replacements:
        cleaned = apply_replacements(cleaned, replacements)
    return cleaned.strip()


class ChatCompletionClient:
    """Streaming client for OpenAI-compatible ``/chat/completions`` endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        prompt: str,
        temperature: float = 0.2,
        timeout_s: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.prompt = prompt
        self.temperature = temperature
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "ChatCompletionClient | None":
        if not settings.get("api_key") or not settings.get("base_url") or not settings.get("model"):
            return None
        return cls(
            base_url=str(settings["base_url"]),
            api_key=str(settings["api_key"]),
            model=str(settings["model"]),
            prompt=str(settings.get("prompt", "")),
            temperature=float(settings.get("temperature", 0.2)),
            timeout_s=float(settings.get("timeout_s", 30.0)),
        )

    def _payload(self, text: str) -> dict:
        return {
            "model": self.model,
            "stream": True,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": self.prompt},
                {"role": "user", "content": text},
            ],
        }

    async def stream(self, text: str) -> AsyncIterator[str]:
        """Yield the accumulated completion text after each streamed delta."""
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "text/event-stream"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        accumulated = ""
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    f"{self.base_url}/chat/completions", json=self._payload(text), headers=headers
                ) as response:
                    response.raise_for_status()
                    async for raw_line in response.content:
                        line = raw_line.decode("utf-8", errors="ignore").strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if data == "[DONE]":
                            break
                        delta = _extract_delta(data)
                        if delta:
                            accumulated += delta
                            yield accumulated
        except aiohttp.ClientError as e:
            raise PostProcessError(f"AI request failed: {e}", cause=e) from e


def _extract_delta(data: str) -> str:
    try:
        chunk = json.loads(data)
        return chunk["choices"][0].get("delta", {}).get("content") or ""
    except (ValueError, KeyError, IndexError, TypeError):
        return ""


class PostProcessPipeline:
    """Simple cleanup plus optional AI rewrite of a final transcript."""

    def __init__(
        self,
        ai_enabled: bool = False,
        client: ChatCompletionClient | None = None,
        trim_punctuation: bool = True,
        trim_emoji: bool = False,
        replacements: dict[str, str] | None = None,
    ) -> None:
        self.ai_enabled = ai_enabled
        self.client = client
        self.trim_punctuation = trim_punctuation
        self.trim_emoji = trim_emoji
        self.replacements = dict(replacements or {})

    @classmethod
    def from_config(cls, config: ConfigLoader) -> "PostProcessPipeline":
        return cls(
            ai_enabled=config.ai_postprocess_enabled,
            client=ChatCompletionClient.from_settings(config.ai_settings),
            trim_punctuation=config.trim_trailing_punctuation,
            trim_emoji=config.trim_trailing_emoji,
            replacements=config.replacements,
        )

    @property
    def ai_available(self) -> bool:
        return self.ai_enabled and self.client is not None

    def apply_simple(self, text: str) -> str:
        try:
            return simple_cleanup(text, self.trim_punctuation, self.trim_emoji, self.replacements)
        except Exception as e:
            logger.warning(f"Simple cleanup failed, keeping original text: {e}")
            return text

    async def apply_with_ai(self, text: str, on_streaming_update: StreamingUpdate | None = None) -> PostProcessResult:
        started = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        if not self.ai_available or not text.strip():
            return PostProcessResult(text=self.apply_simple(text), used_ai=False, attempted=False)

        improved = ""
        try:
            async for accumulated in self.client.stream(text):
                improved = accumulated
                if on_streaming_update is not None:
                    on_streaming_update(accumulated)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"AI post-processing failed after {elapsed()}ms, using simple cleanup: {e}")
            return PostProcessResult(text=self.apply_simple(text), used_ai=False, attempted=True, elapsed_ms=elapsed())

        improved = improved.strip()
        if not improved:
            logger.info("AI post-processing returned blank text, using simple cleanup")
            return PostProcessResult(text=self.apply_simple(text), used_ai=False, attempted=True, elapsed_ms=elapsed())

        logger.debug(f"AI post-processing finished in {elapsed()}ms")
        return PostProcessResult(text=improved, used_ai=True, attempted=True, elapsed_ms=elapsed())
