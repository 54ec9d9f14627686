"""Tests for transcript post-processing."""

import json

import pytest
from aiohttp import web

from matilda_dictation.recognition.postprocess import (
    ChatCompletionClient,
    PostProcessPipeline,
    apply_replacements,
    simple_cleanup,
    trim_trailing_emoji,
    trim_trailing_punctuation,
)
from matilda_dictation.recognition.types import PostProcessError


class _FakeClient:
    def __init__(self, chunks=(), error: Exception | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.calls = []

    async def stream(self, text):
        self.calls.append(text)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class TestSimpleCleanup:
    """Test the deterministic cleanup path."""

    def test_strips_and_trims_period(self):
        assert simple_cleanup("  Hi there.  ") == "Hi there"

    def test_collapses_inner_whitespace(self):
        assert simple_cleanup("hello \n\t  world") == "hello world"

    def test_trims_cjk_punctuation(self):
        assert simple_cleanup("你好。") == "你好"

    def test_keeps_punctuation_when_disabled(self):
        assert simple_cleanup("Hi there.", trim_punctuation=False) == "Hi there."

    def test_trims_emoji_when_enabled(self):
        assert simple_cleanup("Sounds good 👍", trim_emoji=True) == "Sounds good"
        assert simple_cleanup("Sounds good 👍") == "Sounds good 👍"

    def test_emoji_then_punctuation(self):
        assert simple_cleanup("Great job! 🎉", trim_emoji=True) == "Great job"

    def test_applies_replacements(self):
        assert simple_cleanup("open get hub now.", replacements={"get hub": "GitHub"}) == "open GitHub now"

    def test_blank_input(self):
        assert simple_cleanup("   ") == ""
        assert simple_cleanup("") == ""


class TestHelpers:
    """Test trimming and replacement helpers."""

    def test_trim_trailing_punctuation_only_trailing(self):
        assert trim_trailing_punctuation("a.b. ?!") == "a.b"

    def test_trim_trailing_emoji_with_joiner(self):
        assert trim_trailing_emoji("family \U0001F468\u200d\U0001F469\u200d\U0001F467") == "family"

    def test_replacements_longest_first(self):
        replacements = {"new": "old", "new york": "NYC"}
        assert apply_replacements("new york is new", replacements) == "NYC is old"


class TestPostProcessPipeline:
    """Test PostProcessPipeline paths."""

    def test_ai_unavailable_without_client(self):
        assert PostProcessPipeline(ai_enabled=True).ai_available is False
        assert PostProcessPipeline(ai_enabled=False, client=_FakeClient()).ai_available is False

    def test_from_config(self, make_config):
        config = make_config(
            {
                "postprocess": {
                    "ai_enabled": True,
                    "trim_trailing_emoji": True,
                    "replacements": {"foo": "bar"},
                    "ai": {"api_key": "sk-test"},
                }
            }
        )
        pipeline = PostProcessPipeline.from_config(config)
        assert pipeline.ai_available is True
        assert pipeline.trim_emoji is True
        assert pipeline.replacements == {"foo": "bar"}

    @pytest.mark.asyncio
    async def test_streams_updates_and_uses_ai_text(self):
        updates = []
        client = _FakeClient(["Hello", "Hello, world", "Hello, world!"])
        pipeline = PostProcessPipeline(ai_enabled=True, client=client)

        result = await pipeline.apply_with_ai("hello world", updates.append)

        assert updates == ["Hello", "Hello, world", "Hello, world!"]
        assert result.text == "Hello, world!"
        assert result.used_ai is True
        assert result.attempted is True
        assert client.calls == ["hello world"]

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_simple(self):
        client = _FakeClient(["partial"], error=PostProcessError("boom"))
        pipeline = PostProcessPipeline(ai_enabled=True, client=client)

        result = await pipeline.apply_with_ai("  Hi there.  ")

        assert result.text == "Hi there"
        assert result.used_ai is False
        assert result.attempted is True

    @pytest.mark.asyncio
    async def test_blank_ai_output_falls_back_to_simple(self):
        pipeline = PostProcessPipeline(ai_enabled=True, client=_FakeClient(["   "]))

        result = await pipeline.apply_with_ai("raw text.")

        assert result.text == "raw text"
        assert result.used_ai is False

    @pytest.mark.asyncio
    async def test_disabled_ai_uses_simple(self):
        client = _FakeClient(["should not be used"])
        pipeline = PostProcessPipeline(ai_enabled=False, client=client)

        result = await pipeline.apply_with_ai("raw text.")

        assert result.text == "raw text"
        assert result.attempted is False
        assert client.calls == []


async def _start_completion_server(handler):
    app = web.Application()
    app.router.add_post("/v1/chat/completions", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    return runner, f"http://{host}:{port}/v1"


class TestChatCompletionClient:
    """Test the SSE client against a local aiohttp server."""

    def test_from_settings_requires_key(self):
        assert ChatCompletionClient.from_settings({"base_url": "http://x", "model": "m", "api_key": ""}) is None
        client = ChatCompletionClient.from_settings({"base_url": "http://x/", "model": "m", "api_key": "k"})
        assert client.base_url == "http://x"

    @pytest.mark.asyncio
    async def test_streams_accumulated_text(self):
        received = {}

        async def handler(request):
            received["auth"] = request.headers.get("Authorization")
            received["body"] = await request.json()
            response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
            await response.prepare(request)
            for delta in ("Hello", ", world"):
                chunk = {"choices": [{"delta": {"content": delta}}]}
                await response.write(f"data: {json.dumps(chunk)}\n\n".encode())
            await response.write(b"data: [DONE]\n\n")
            return response

        runner, base_url = await _start_completion_server(handler)
        try:
            client = ChatCompletionClient(base_url, "sk-test", "gpt-test", prompt="fix it")
            updates = [text async for text in client.stream("hello world")]
        finally:
            await runner.cleanup()

        assert updates == ["Hello", "Hello, world"]
        assert received["auth"] == "Bearer sk-test"
        assert received["body"]["stream"] is True
        assert received["body"]["messages"][-1] == {"role": "user", "content": "hello world"}

    @pytest.mark.asyncio
    async def test_http_error_raises_postprocess_error(self):
        async def handler(request):
            return web.json_response({"error": "nope"}, status=500)

        runner, base_url = await _start_completion_server(handler)
        try:
            client = ChatCompletionClient(base_url, "sk-test", "gpt-test", prompt="fix it")
            with pytest.raises(PostProcessError):
                async for _ in client.stream("hello"):
                    pass
        finally:
            await runner.cleanup()
