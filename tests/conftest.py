"""Shared fixtures for matilda_dictation tests."""

import asyncio
import os
import tempfile

# Keep test log files out of the user's home directory
os.environ.setdefault("MATILDA_LOG_DIR", tempfile.mkdtemp(prefix="matilda-dictation-test-logs-"))

import pytest

from matilda_dictation.core.config import ConfigLoader
from matilda_dictation.recognition.engines.base import EngineKind, LocalModelReadiness, RecognitionEngine

_ENV_VARS = (
    "MATILDA_CONFIG",
    "DICTATION_VENDOR",
    "DICTATION_BACKUP_VENDOR",
    "DICTATION_AI_API_KEY",
    "OPENAI_API_KEY",
    "SILICONFLOW_API_KEY",
    "ZHIPU_API_KEY",
)


class ScriptedEngine(RecognitionEngine):
    """Engine that replays scripted events on start and on stop.

    ``stop_delay_ms`` delays the stop script, which lets tests race the
    processing deadline or a cancel against the engine's answer.
    """

    def __init__(
        self,
        vendor: str = "fake",
        on_start=(),
        on_stop=(),
        stop_delay_ms: int = 0,
        kind: EngineKind = EngineKind.STREAMING,
        readiness: LocalModelReadiness | None = None,
        fail_start: Exception | None = None,
    ) -> None:
        super().__init__(vendor)
        self.kind = kind
        self.on_start_events = list(on_start)
        self.on_stop_events = list(on_stop)
        self.stop_delay_ms = stop_delay_ms
        self.fail_start = fail_start
        self._readiness = readiness
        self.audio: list[tuple[bytes, int, int]] = []
        self.start_calls = 0
        self.stop_calls = 0
        self.cancel_calls = 0
        self._task: asyncio.Task | None = None

    @property
    def readiness(self) -> LocalModelReadiness | None:
        return self._readiness

    async def _on_start(self) -> None:
        self.start_calls += 1
        if self.fail_start is not None:
            raise self.fail_start
        for event in self.on_start_events:
            self.emit(event)

    async def _on_stop(self) -> None:
        self.stop_calls += 1
        if self.stop_delay_ms:
            self._task = asyncio.create_task(self._answer_later())
        else:
            for event in self.on_stop_events:
                self.emit(event)

    async def _answer_later(self) -> None:
        await asyncio.sleep(self.stop_delay_ms / 1000)
        for event in self.on_stop_events:
            self.emit(event)

    async def _on_cancel(self) -> None:
        self.cancel_calls += 1
        if self._task is not None:
            self._task.cancel()

    def _on_audio(self, pcm: bytes, sample_rate: int, channels: int) -> None:
        self.audio.append((pcm, sample_rate, channels))


@pytest.fixture
def scripted_engine():
    """The ScriptedEngine class, for building fake engines inline."""
    return ScriptedEngine


@pytest.fixture
def make_config(tmp_path, monkeypatch):
    """Build a ConfigLoader isolated from the environment and home config."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    def factory(overrides=None, toml: str | None = None) -> ConfigLoader:
        path = tmp_path / "config.toml"
        if toml is not None:
            path.write_text(toml, encoding="utf-8")
        return ConfigLoader(path, overrides=overrides)

    return factory
