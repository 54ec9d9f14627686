"""File-based recognition over an OpenAI-compatible transcription endpoint.

The engine buffers pushed PCM while recording, then uploads the whole
utterance as a WAV file when stopped. Works with any vendor that exposes
``POST {base_url}/audio/transcriptions`` (OpenAI, SiliconFlow, Zhipu and
self-hosted gateways).
"""

import asyncio
import io
import wave

import aiohttp
import numpy as np

from ...core.config import setup_logging
from ..types import Amplitude, EngineError, ErrorCategory, Final, Stopped
from .base import EngineKind, RecognitionEngine

logger = setup_logging(__name__, log_filename="recognition.txt")

PCM_SAMPLE_RATE = 16000
PCM_CHANNELS = 1


def pcm_to_wav(pcm: bytes, sample_rate: int = PCM_SAMPLE_RATE, channels: int = PCM_CHANNELS) -> bytes:
    """Wrap raw PCM16LE bytes in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)  # 16-bit = 2 bytes
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


def pcm_level(pcm: bytes) -> float:
    """Normalized RMS level (0.0 - 1.0) of a PCM16LE frame."""
    usable = len(pcm) - (len(pcm) % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(pcm[:usable], dtype=np.int16).astype(np.float32) / 32768.0
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return min(1.0, rms)


def _category_for_status(status: int) -> ErrorCategory:
    if status in (401, 403):
        return ErrorCategory.PERMISSION_DENIED
    if status in (408, 504):
        return ErrorCategory.TIMEOUT
    if status == 429 or status >= 500:
        return ErrorCategory.SERVER
    return ErrorCategory.GENERIC


class BufferedFileEngine(RecognitionEngine):
    """Buffer pushed PCM and upload it on stop."""

    kind = EngineKind.FILE

    def __init__(
        self,
        vendor: str,
        api_key: str,
        base_url: str,
        model: str,
        language: str = "",
        timeout_s: float = 60.0,
    ) -> None:
        super().__init__(vendor)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.language = language
        self.timeout_s = timeout_s
        self._pcm = bytearray()
        self._task: asyncio.Task | None = None

    @property
    def buffered_bytes(self) -> int:
        return len(self._pcm)

    async def _on_start(self) -> None:
        self._pcm.clear()

    def _on_audio(self, pcm: bytes, sample_rate: int, channels: int) -> None:
        if sample_rate != PCM_SAMPLE_RATE or channels != PCM_CHANNELS:
            logger.warning(
                f"Engine {self.vendor}: dropping frame with unsupported format {sample_rate}Hz/{channels}ch"
            )
            return
        self._pcm.extend(pcm)
        self.emit(Amplitude(pcm_level(pcm)))

    async def _on_stop(self) -> None:
        self.emit(Stopped())
        self._task = asyncio.create_task(self._recognize(bytes(self._pcm)))

    async def _on_cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def _recognize(self, pcm: bytes) -> None:
        if not pcm:
            self.emit(Final(""))
            return
        try:
            text = await self.transcribe(pcm_to_wav(pcm))
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientResponseError as e:
            logger.warning(f"Engine {self.vendor}: HTTP {e.status}: {e.message}")
            self.emit(EngineError(f"server error {e.status}: {e.message}", _category_for_status(e.status)))
        except TimeoutError:
            self.emit(EngineError("request timeout", ErrorCategory.TIMEOUT))
        except aiohttp.ClientError as e:
            logger.warning(f"Engine {self.vendor}: network error: {e}")
            self.emit(EngineError(f"network error: {e}", ErrorCategory.NETWORK))
        except ValueError as e:
            logger.warning(f"Engine {self.vendor}: malformed response: {e}")
            self.emit(EngineError(f"malformed response: {e}", ErrorCategory.SERVER))
        else:
            self.emit(Final(text))

    async def transcribe(self, wav: bytes) -> str:
        """Upload ``wav`` and return the recognized text.

        Raises:
            aiohttp.ClientError: transport or HTTP status failure
            ValueError: the reply body is not a JSON object

        """
        form = aiohttp.FormData()
        form.add_field("file", wav, filename="audio.wav", content_type="audio/wav")
        form.add_field("model", self.model)
        if self.language:
            form.add_field("language", self.language)

        headers = {"Authorization": f"Bearer {self.api_key}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                f"{self.base_url}/audio/transcriptions", data=form, headers=headers
            ) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        return str(payload.get("text", "")).strip()
