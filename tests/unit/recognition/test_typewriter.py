"""Tests for paced text rendering."""

import asyncio

import pytest

from matilda_dictation.recognition.typewriter import PacedTextRenderer, TypewriterConfig, next_frame

FAST = TypewriterConfig(frame_delay_ms=1, rush_frame_delay_ms=1, idle_stop_delay_ms=20)


class TestNextFrame:
    """Test next_frame step computation."""

    def test_step_sized_to_backlog(self):
        config = TypewriterConfig(normal_target_frames=4, normal_max_step=100)
        assert next_frame("", "abcdefgh", rush=False, config=config) == "ab"

    def test_step_capped(self):
        config = TypewriterConfig(normal_target_frames=1, normal_max_step=3)
        assert next_frame("", "abcdefgh", rush=False, config=config) == "abc"

    def test_step_at_least_one(self):
        config = TypewriterConfig(normal_target_frames=100, normal_max_step=4)
        assert next_frame("ab", "abc", rush=False, config=config) == "abc"

    def test_rush_uses_rush_settings(self):
        config = TypewriterConfig(rush_target_frames=2, rush_max_step=64)
        assert next_frame("", "abcdefgh", rush=True, config=config) == "abcd"

    def test_non_prefix_target_jumps(self):
        assert next_frame("hello wor", "hello there", rush=False, config=TypewriterConfig()) == "hello there"

    def test_shorter_target_jumps(self):
        assert next_frame("hello world", "hello", rush=False, config=TypewriterConfig()) == "hello"

    def test_already_there(self):
        assert next_frame("done", "done", rush=False, config=TypewriterConfig()) == "done"


class TestTypewriterConfig:
    """Test TypewriterConfig.from_dict."""

    def test_ignores_unknown_keys(self):
        config = TypewriterConfig.from_dict({"frame_delay_ms": "5", "rush_wait_max_ms": 2000})
        assert config.frame_delay_ms == 5
        assert config.rush_frame_delay_ms == 10


class TestPacedTextRenderer:
    """Test the rendering loop."""

    @pytest.mark.asyncio
    async def test_converges_to_target(self):
        frames = []
        renderer = PacedTextRenderer(frames.append, FAST)
        renderer.submit("hello world")

        assert await renderer.wait_for_length(11, max_wait_ms=2000, poll_ms=1)
        assert renderer.current_text == "hello world"
        assert frames[-1] == "hello world"
        renderer.cancel()

    @pytest.mark.asyncio
    async def test_frames_grow_and_have_no_duplicates(self):
        frames = []
        renderer = PacedTextRenderer(frames.append, FAST)
        renderer.submit("a fairly long sentence to render")
        await renderer.wait_for_length(32, max_wait_ms=2000, poll_ms=1)
        renderer.cancel()

        assert len(frames) > 1
        for before, after in zip(frames, frames[1:]):
            assert after != before
            assert after.startswith(before)

    @pytest.mark.asyncio
    async def test_replaced_target_converges_to_latest(self):
        frames = []
        renderer = PacedTextRenderer(frames.append, FAST)
        renderer.submit("the first guess at the text")
        await asyncio.sleep(0.005)
        renderer.submit("The final text.")

        assert await renderer.wait_for_length(len("The final text."), max_wait_ms=2000, poll_ms=1)
        await asyncio.sleep(0.01)
        assert renderer.current_text == "The final text."
        assert frames[-1] == "The final text."
        renderer.cancel()

    @pytest.mark.asyncio
    async def test_stops_when_idle_and_restarts_on_submit(self):
        frames = []
        renderer = PacedTextRenderer(frames.append, FAST)
        renderer.submit("hi")
        await renderer.wait_for_length(2, max_wait_ms=1000, poll_ms=1)
        await asyncio.sleep(0.1)
        assert renderer.is_running is False

        renderer.submit("hi there")
        assert renderer.is_running is True
        assert await renderer.wait_for_length(8, max_wait_ms=1000, poll_ms=1)
        renderer.cancel()

    @pytest.mark.asyncio
    async def test_cancel_stops_emission(self):
        frames = []
        slow = TypewriterConfig(frame_delay_ms=5, normal_target_frames=100, normal_max_step=1)
        renderer = PacedTextRenderer(frames.append, slow)
        renderer.submit("x" * 200)
        await asyncio.sleep(0.02)
        renderer.cancel()
        count = len(frames)
        await asyncio.sleep(0.05)

        assert len(frames) == count
        assert renderer.is_canceled
        renderer.submit("ignored")
        assert renderer.is_running is False

    @pytest.mark.asyncio
    async def test_wait_for_length_is_bounded(self):
        slow = TypewriterConfig(frame_delay_ms=50, normal_target_frames=1000, normal_max_step=1)
        renderer = PacedTextRenderer(lambda _: None, slow)
        renderer.submit("y" * 500)

        loop = asyncio.get_running_loop()
        started = loop.time()
        reached = await renderer.wait_for_length(500, max_wait_ms=100, poll_ms=10)
        elapsed = loop.time() - started
        renderer.cancel()

        assert reached is False
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_rush_converges_faster(self):
        config = TypewriterConfig(
            frame_delay_ms=5,
            rush_frame_delay_ms=1,
            normal_target_frames=100,
            normal_max_step=1,
            rush_target_frames=2,
            rush_max_step=64,
        )
        renderer = PacedTextRenderer(lambda _: None, config)
        renderer.submit("z" * 100, rush=True)

        assert await renderer.wait_for_length(100, max_wait_ms=500, poll_ms=1)
        renderer.cancel()
