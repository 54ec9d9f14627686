"""Tests for vendor resolution and engine building."""

import pytest

from matilda_dictation.recognition.engines.file_upload import BufferedFileEngine
from matilda_dictation.recognition.engines.loopback import LoopbackEngine
from matilda_dictation.recognition.parallel import FailoverMode, ParallelEngineCoordinator
from matilda_dictation.recognition.types import EngineBuildError
from matilda_dictation.recognition.vendors import (
    VENDORS,
    build_engine,
    build_session_engine,
    get_available_vendors,
    get_vendor_info,
    has_credentials,
    is_vendor_available,
    register_engine_factory,
    resolve_vendor,
    should_use_backup,
    unregister_engine_factory,
)


@pytest.fixture
def local_factory(scripted_engine):
    created = []

    def factory(vendor, config):
        engine = scripted_engine(vendor)
        created.append(engine)
        return engine

    register_engine_factory("sensevoice", factory)
    yield created
    unregister_engine_factory("sensevoice")


class TestResolveVendor:
    """Test vendor id normalization."""

    def test_case_and_whitespace(self):
        assert resolve_vendor("  OpenAI ") == "openai"

    def test_aliases(self):
        assert resolve_vendor("zipformer") == "paraformer"
        assert resolve_vendor("funasr") == "funasr_nano"

    def test_unknown_vendor(self):
        with pytest.raises(EngineBuildError):
            resolve_vendor("nope")


class TestAvailability:
    """Test credential and availability checks."""

    def test_local_vendors_need_no_key(self, make_config):
        assert has_credentials("sensevoice", make_config()) is True

    def test_key_from_environment(self, make_config, monkeypatch):
        config = make_config()
        assert has_credentials("openai", config) is False
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert has_credentials("openai", config) is True

    def test_key_from_config(self, make_config):
        config = make_config({"vendors": {"zhipu": {"api_key": "k"}}})
        assert has_credentials("zhipu", config) is True

    def test_unknown_vendor_unavailable(self, make_config):
        assert is_vendor_available("nope", make_config()) is False

    def test_streaming_vendor_without_factory_unavailable(self, make_config):
        config = make_config({"vendors": {"volc": {"api_key": "k"}}})
        assert is_vendor_available("volc", config) is False

    def test_registered_factory_makes_vendor_available(self, make_config, local_factory):
        assert is_vendor_available("sensevoice", make_config()) is True

    def test_available_vendors(self, make_config, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        available = get_available_vendors(make_config())
        assert "openai" in available
        assert "mock" in available
        assert "siliconflow" not in available

    def test_vendor_info_covers_every_vendor(self):
        info = get_vendor_info()
        assert set(info) == set(VENDORS)
        assert info["paraformer"]["local"] is True
        assert info["openai"]["installed"] is True


class TestBuildEngine:
    """Test single-engine construction."""

    def test_mock_uses_configured_text(self, make_config):
        engine = build_engine("mock", make_config({"vendors": {"mock": {"text": "pong"}}}))
        assert isinstance(engine, LoopbackEngine)
        assert engine.text == "pong"

    def test_upload_vendor(self, make_config):
        config = make_config({"vendors": {"openai": {"api_key": "sk"}}, "recognition": {"language": "en"}})
        engine = build_engine("openai", config)
        assert isinstance(engine, BufferedFileEngine)
        assert engine.base_url == "https://api.openai.com/v1"
        assert engine.language == "en"

    def test_missing_key(self, make_config):
        with pytest.raises(EngineBuildError, match="missing API key"):
            build_engine("openai", make_config())

    def test_no_implementation(self, make_config):
        with pytest.raises(EngineBuildError, match="no engine implementation"):
            build_engine("paraformer", make_config())

    def test_factory_preferred(self, make_config, local_factory):
        engine = build_engine("sensevoice", make_config())
        assert engine is local_factory[0]

    def test_factory_error_wrapped(self, make_config):
        def broken(vendor, config):
            raise RuntimeError("model file missing")

        register_engine_factory("telespeech", broken)
        try:
            with pytest.raises(EngineBuildError, match="model file missing"):
                build_engine("telespeech", make_config())
        finally:
            unregister_engine_factory("telespeech")


class TestBackupGate:
    """Test when a backup engine is paired with the primary."""

    def test_disabled(self, make_config):
        assert should_use_backup("openai", make_config({"backup": {"vendor": "mock"}})) is False

    def test_same_vendor(self, make_config):
        config = make_config({"backup": {"enabled": True, "vendor": "OpenAI"}})
        assert should_use_backup("openai", config) is False

    def test_missing_credentials(self, make_config):
        config = make_config({"backup": {"enabled": True, "vendor": "zhipu"}})
        assert should_use_backup("mock", config) is False

    def test_enabled(self, make_config):
        config = make_config({"backup": {"enabled": True, "vendor": "mock"}})
        assert should_use_backup("sensevoice", config) is True

    def test_env_override(self, make_config, monkeypatch):
        monkeypatch.setenv("DICTATION_BACKUP_VENDOR", "mock")
        config = make_config({"backup": {"enabled": True, "vendor": "zhipu"}})
        assert should_use_backup("sensevoice", config) is True


class TestBuildSessionEngine:
    """Test the engine a session drives."""

    def test_primary_only(self, make_config):
        engine = build_session_engine(make_config(), vendor="mock")
        assert isinstance(engine, LoopbackEngine)

    def test_parallel(self, make_config, local_factory):
        config = make_config({"backup": {"enabled": True, "vendor": "mock", "failover_mode": "prefer_primary"}})
        engine = build_session_engine(config, vendor="sensevoice")

        assert isinstance(engine, ParallelEngineCoordinator)
        assert engine.primary is local_factory[0]
        assert isinstance(engine.backup, LoopbackEngine)
        assert engine.mode is FailoverMode.PREFER_PRIMARY

    def test_unknown_failover_mode_races(self, make_config, local_factory):
        config = make_config({"backup": {"enabled": True, "vendor": "mock", "failover_mode": "whatever"}})
        engine = build_session_engine(config, vendor="sensevoice")
        assert engine.mode is FailoverMode.RACE

    def test_backup_build_failure_degrades(self, make_config, local_factory, monkeypatch):
        monkeypatch.setenv("ZHIPU_API_KEY", "k")
        config = make_config(
            {"backup": {"enabled": True, "vendor": "zhipu"}, "vendors": {"zhipu": {"base_url": ""}}}
        )
        engine = build_session_engine(config, vendor="sensevoice")
        assert engine is local_factory[0]

    def test_configured_vendor_used_by_default(self, make_config):
        engine = build_session_engine(make_config({"recognition": {"vendor": "mock"}}))
        assert engine.vendor == "mock"
