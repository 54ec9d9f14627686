#!/usr/bin/env python3
"""CLI Smoke Tests - "Does it still work?" tests

These tests detect when the app is fundamentally broken:
- Import errors
- Broken command wiring
- A mock session that no longer reaches a final transcript

NOT testing edge cases or complex logic - just "can the app start?"
"""

import json
import wave

import pytest
from click.testing import CliRunner

from matilda_dictation.main import main


@pytest.fixture
def run_cli(tmp_path, monkeypatch):
    for name in ("DICTATION_VENDOR", "DICTATION_BACKUP_VENDOR", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.toml"

    def runner(*args):
        return CliRunner().invoke(main, ["--config", str(config_path), *args])

    return runner


class TestCLICommands:
    """Test the basic commands."""

    def test_help(self, run_cli):
        result = run_cli("--help")

        assert result.exit_code == 0
        assert "simulate" in result.output

    def test_vendors_json(self, run_cli):
        result = run_cli("vendors", "--json")

        assert result.exit_code == 0
        info = json.loads(result.output)
        assert info["mock"]["available"] is True
        assert info["openai"]["credentials"] is False

    def test_simulate_mock_session(self, run_cli):
        result = run_cli("simulate", "--text", "Hello there.", "--hold-ms", "0", "--json")

        assert result.exit_code == 0
        events = json.loads(result.output)
        names = [event["event"] for event in events]
        assert names[0] == "ready"
        assert names[-1] == "final"
        assert events[-1]["payload"]["text"] == "Hello there"
        assert events[-1]["payload"]["vendor"] == "mock"

    def test_simulate_pushes_wav(self, run_cli, tmp_path):
        wav_path = tmp_path / "clip.wav"
        with wave.open(str(wav_path), "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(16000)
            wav.writeframes(b"\x00\x00" * 3200)

        result = run_cli("simulate", "--wav", str(wav_path), "--json")

        assert result.exit_code == 0
        assert json.loads(result.output)[-1]["payload"]["audio_ms"] == 200

    def test_simulate_unknown_vendor_fails(self, run_cli):
        result = run_cli("simulate", "--vendor", "nope")

        assert result.exit_code == 1
