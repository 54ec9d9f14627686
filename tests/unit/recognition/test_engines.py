"""Tests for the engine base contract and bundled engines."""

import asyncio
import io
import threading
import wave

import numpy as np
import pytest
from aiohttp import web

from matilda_dictation.recognition.engines.base import LocalModelReadiness
from matilda_dictation.recognition.engines.file_upload import BufferedFileEngine, pcm_level, pcm_to_wav
from matilda_dictation.recognition.engines.loopback import DEFAULT_FINAL_TEXT, LoopbackEngine
from matilda_dictation.recognition.types import (
    Amplitude,
    EngineError,
    ErrorCategory,
    Final,
    Partial,
    Stopped,
)


class TestEngineContract:
    """Test guarantees enforced by RecognitionEngine."""

    @pytest.mark.asyncio
    async def test_nothing_after_terminal(self, scripted_engine):
        engine = scripted_engine(on_stop=[Final("a"), Partial("late"), EngineError("late")])
        events = []
        engine.attach(events.append)
        await engine.start()
        await engine.stop()

        assert events == [Final("a")]
        assert engine.is_terminated
        assert engine.is_running is False

    @pytest.mark.asyncio
    async def test_nothing_after_cancel(self, scripted_engine):
        engine = scripted_engine()
        events = []
        engine.attach(events.append)
        await engine.start()
        await engine.cancel()
        engine.emit(Final("ignored"))

        assert events == []

    @pytest.mark.asyncio
    async def test_stop_and_cancel_idempotent(self, scripted_engine):
        engine = scripted_engine(on_stop=[Final("a")])
        engine.attach(lambda event: None)
        await engine.start()
        await engine.stop()
        await engine.stop()
        await engine.cancel()
        await engine.cancel()

        assert engine.stop_calls == 1
        assert engine.cancel_calls == 0

    @pytest.mark.asyncio
    async def test_stop_before_start_is_noop(self, scripted_engine):
        engine = scripted_engine(on_stop=[Final("a")])
        engine.attach(lambda event: None)
        await engine.stop()
        assert engine.stop_calls == 0

    @pytest.mark.asyncio
    async def test_emit_from_worker_thread(self, scripted_engine):
        engine = scripted_engine()
        received = asyncio.Event()
        events = []

        def sink(event):
            events.append(event)
            received.set()

        engine.attach(sink)
        await engine.start()
        thread = threading.Thread(target=engine.emit, args=(Partial("from thread"),))
        thread.start()
        thread.join()
        await asyncio.wait_for(received.wait(), timeout=1)

        assert events == [Partial("from thread")]
        await engine.cancel()


class TestLocalModelReadiness:
    """Test the readiness wait handle."""

    @pytest.mark.asyncio
    async def test_ready_returns_zero(self):
        readiness = LocalModelReadiness()
        readiness.mark_ready()
        assert await readiness.wait(1000) == 0

    @pytest.mark.asyncio
    async def test_wait_is_bounded(self):
        readiness = LocalModelReadiness()
        waited = await readiness.wait(30)
        assert 20 <= waited < 1000
        assert readiness.is_ready is False

    @pytest.mark.asyncio
    async def test_mark_ready_from_thread(self):
        readiness = LocalModelReadiness()
        readiness.bind(asyncio.get_running_loop())
        threading.Timer(0.02, readiness.mark_ready).start()

        waited = await readiness.wait(2000)

        assert readiness.is_ready
        assert waited < 2000


class TestLoopbackEngine:
    """Test the mock engine."""

    @pytest.mark.asyncio
    async def test_auto_finish(self):
        engine = LoopbackEngine()
        events = []
        engine.attach(events.append)
        await engine.start()
        await asyncio.sleep(0.01)

        assert events == [Partial("[connectivity test in progress] ..."), Stopped(), Final(DEFAULT_FINAL_TEXT)]

    @pytest.mark.asyncio
    async def test_waits_for_stop(self):
        engine = LoopbackEngine(text="done", partial_text=None, auto_finish=False)
        events = []
        engine.attach(events.append)
        await engine.start()
        await asyncio.sleep(0.01)
        assert events == []

        await engine.stop()
        await asyncio.sleep(0.01)
        assert events == [Final("done")]

    @pytest.mark.asyncio
    async def test_cancel_suppresses_final(self):
        engine = LoopbackEngine(delay_ms=50)
        events = []
        engine.attach(events.append)
        await engine.start()
        await engine.cancel()
        await asyncio.sleep(0.08)

        assert Final(DEFAULT_FINAL_TEXT) not in events


def _tone(ms: int, amplitude: int = 8000) -> bytes:
    samples = np.full(16 * ms, amplitude, dtype=np.int16)
    return samples.tobytes()


class TestPcmHelpers:
    """Test PCM helpers."""

    def test_pcm_to_wav_header(self):
        wav = pcm_to_wav(_tone(100), 16000, 1)
        with wave.open(io.BytesIO(wav), "rb") as reader:
            assert reader.getframerate() == 16000
            assert reader.getnchannels() == 1
            assert reader.getnframes() == 1600

    def test_pcm_level(self):
        assert pcm_level(b"") == 0.0
        assert pcm_level(b"\x00\x00" * 10) == 0.0
        assert pcm_level(_tone(10, 16384)) == pytest.approx(0.5, abs=0.01)

    def test_pcm_level_ignores_odd_byte(self):
        assert pcm_level(b"\x00\x40\x01") == pytest.approx(0.5, abs=0.01)


async def _start_transcription_server(handler):
    app = web.Application()
    app.router.add_post("/v1/audio/transcriptions", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    return runner, f"http://{host}:{port}/v1"


class TestBufferedFileEngine:
    """Test the upload engine against a local aiohttp server."""

    @pytest.mark.asyncio
    async def test_uploads_buffered_audio(self):
        received = {}

        async def handler(request):
            form = await request.post()
            received["model"] = form["model"]
            received["language"] = form.get("language")
            received["size"] = len(form["file"].file.read())
            received["auth"] = request.headers.get("Authorization")
            return web.json_response({"text": " hello world "})

        runner, base_url = await _start_transcription_server(handler)
        try:
            engine = BufferedFileEngine("openai", "sk", base_url, "whisper-1", language="en")
            events = []
            engine.attach(events.append)
            await engine.start()
            engine.write_audio(_tone(100))
            await engine.stop()
            for _ in range(100):
                if engine.is_terminated:
                    break
                await asyncio.sleep(0.02)
        finally:
            await runner.cleanup()

        assert isinstance(events[0], Amplitude)
        assert Stopped() in events
        assert events[-1] == Final("hello world")
        assert received["model"] == "whisper-1"
        assert received["language"] == "en"
        assert received["auth"] == "Bearer sk"
        assert received["size"] == len(pcm_to_wav(_tone(100)))

    @pytest.mark.asyncio
    async def test_http_error_is_categorized(self):
        async def handler(request):
            return web.json_response({"error": "bad key"}, status=401)

        runner, base_url = await _start_transcription_server(handler)
        try:
            engine = BufferedFileEngine("openai", "sk", base_url, "whisper-1")
            events = []
            engine.attach(events.append)
            await engine.start()
            engine.write_audio(_tone(20))
            await engine.stop()
            for _ in range(100):
                if engine.is_terminated:
                    break
                await asyncio.sleep(0.02)
        finally:
            await runner.cleanup()

        assert isinstance(events[-1], EngineError)
        assert events[-1].category is ErrorCategory.PERMISSION_DENIED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, content_type",
        [("<html>502 Bad Gateway</html>", "text/html"), ('["hello"]', "application/json")],
    )
    async def test_malformed_reply_is_server_error(self, body, content_type):
        async def handler(request):
            await request.read()
            return web.Response(text=body, content_type=content_type)

        runner, base_url = await _start_transcription_server(handler)
        try:
            engine = BufferedFileEngine("openai", "sk", base_url, "whisper-1")
            events = []
            engine.attach(events.append)
            await engine.start()
            engine.write_audio(_tone(20))
            await engine.stop()
            for _ in range(100):
                if engine.is_terminated:
                    break
                await asyncio.sleep(0.02)
        finally:
            await runner.cleanup()

        assert isinstance(events[-1], EngineError)
        assert events[-1].category is ErrorCategory.SERVER
        assert "malformed response" in events[-1].message

    @pytest.mark.asyncio
    async def test_empty_recording_gives_empty_final(self):
        engine = BufferedFileEngine("openai", "sk", "http://127.0.0.1:9", "whisper-1")
        events = []
        engine.attach(events.append)
        await engine.start()
        await engine.stop()
        await asyncio.sleep(0.01)

        assert events == [Stopped(), Final("")]

    @pytest.mark.asyncio
    async def test_unsupported_format_dropped(self):
        engine = BufferedFileEngine("openai", "sk", "http://127.0.0.1:9", "whisper-1")
        engine.attach(lambda event: None)
        await engine.start()
        engine.write_audio(_tone(10), 44100, 2)

        assert engine.buffered_bytes == 0
        await engine.cancel()
