#!/usr/bin/env python3
"""Configuration loader that reads from config files."""
import os
from pathlib import Path
from typing import Any

import tomllib

DEFAULT_CONFIG: dict[str, Any] = {
    "recognition": {"vendor": "openai", "language": "", "sample_rate": 16000, "channels": 1},
    "timeouts": {
        "base_ms": 8000,
        "floor_ms": 8000,
        "per_audio_ratio": 0.5,
        "parallel_slack_ms": 2000,
        "local_model_ready_wait_max_ms": 60000,
        "primary_switch_min_ms": 6000,
        "primary_switch_max_ms": 15000,
    },
    "backup": {"enabled": False, "vendor": "", "failover_mode": "race"},
    "typewriter": {
        "frame_delay_ms": 20,
        "rush_frame_delay_ms": 10,
        "idle_stop_delay_ms": 600,
        "normal_target_frames": 24,
        "rush_target_frames": 10,
        "normal_max_step": 4,
        "rush_max_step": 64,
        "rush_wait_max_ms": 2000,
        "rush_poll_ms": 20,
    },
    "postprocess": {
        "ai_enabled": False,
        "trim_trailing_punctuation": True,
        "trim_trailing_emoji": False,
        "replacements": {},
        "ai": {
            "base_url": "https://api.openai.com/v1",
            "api_key": "",
            "model": "gpt-4o-mini",
            "temperature": 0.2,
            "timeout_s": 30.0,
            "prompt": (
                "You clean up raw speech recognition output. Fix punctuation, casing and obvious "
                "recognition mistakes. Reply with the corrected text only."
            ),
        },
    },
    "vendors": {
        "openai": {"base_url": "https://api.openai.com/v1", "model": "whisper-1"},
        "siliconflow": {"base_url": "https://api.siliconflow.cn/v1", "model": "FunAudioLLM/SenseVoiceSmall"},
        "zhipu": {"base_url": "https://open.bigmodel.cn/api/paas/v4", "model": "glm-asr"},
        "mock": {"text": "External speech API connected (mock)"},
    },
    "server": {"host": "localhost", "bind_host": "0.0.0.0", "port": 8790, "max_message_mb": 8},
    "external_api": {"enabled": True},
}


class ConfigLoader:
    """Load configuration from config files."""

    def __init__(self, config_path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> None:
        if config_path is None:
            config_path = self._default_config_path()

        self.config_file = str(config_path)
        config_path = Path(config_path)
        if config_path.exists():
            with open(config_path, "rb") as f:
                full_config = tomllib.load(f)
            dictation_config = full_config.get("dictation", {})
        else:
            dictation_config = {}

        self._config = self._merge_dicts(DEFAULT_CONFIG, dictation_config)
        if overrides:
            self._config = self._merge_dicts(self._config, overrides)

    def _default_config_path(self) -> Path:
        env_path = os.environ.get("MATILDA_CONFIG")
        if env_path:
            return Path(env_path)
        return Path.home() / ".matilda" / "config.toml"

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        merged = base.copy()
        for key, value in override.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self._merge_dicts(merged[key], value)
            else:
                merged[key] = value
        return merged

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get a value using dot notation (e.g., 'timeouts.base_ms')"""
        keys = key_path.split(".")
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    # Recognition
    @property
    def vendor(self) -> str:
        """Primary recognition vendor. Override via DICTATION_VENDOR env var."""
        return os.environ.get("DICTATION_VENDOR") or str(self.get("recognition.vendor", "openai"))

    @property
    def language(self) -> str:
        return str(self.get("recognition.language", ""))

    @property
    def sample_rate(self) -> int:
        return int(self.get("recognition.sample_rate", 16000))

    @property
    def channels(self) -> int:
        return int(self.get("recognition.channels", 1))

    def vendor_settings(self, vendor: str) -> dict[str, Any]:
        """Get the settings table for a vendor (empty if unconfigured)"""
        settings = self.get(f"vendors.{vendor}", {})
        return dict(settings) if isinstance(settings, dict) else {}

    def vendor_api_key(self, vendor: str) -> str:
        """Get a vendor API key.

        Priority order:
        1. Environment variable <VENDOR>_API_KEY
        2. Config file value vendors.<vendor>.api_key
        """
        env_key = os.environ.get(f"{vendor.upper()}_API_KEY")
        if env_key:
            return env_key
        return str(self.vendor_settings(vendor).get("api_key", "") or "")

    # Backup engine
    @property
    def backup_enabled(self) -> bool:
        return bool(self.get("backup.enabled", False))

    @property
    def backup_vendor(self) -> str:
        """Backup vendor. Override via DICTATION_BACKUP_VENDOR env var."""
        return os.environ.get("DICTATION_BACKUP_VENDOR") or str(self.get("backup.vendor", ""))

    @property
    def failover_mode(self) -> str:
        return str(self.get("backup.failover_mode", "race"))

    # Timeouts
    @property
    def timeouts(self) -> dict[str, Any]:
        return dict(self.get("timeouts", {}))

    @property
    def local_model_ready_wait_max_ms(self) -> int:
        return int(self.get("timeouts.local_model_ready_wait_max_ms", 60000))

    # Typewriter
    @property
    def typewriter(self) -> dict[str, Any]:
        return dict(self.get("typewriter", {}))

    @property
    def rush_wait_max_ms(self) -> int:
        return int(self.get("typewriter.rush_wait_max_ms", 2000))

    @property
    def rush_poll_ms(self) -> int:
        return int(self.get("typewriter.rush_poll_ms", 20))

    # Post-processing
    @property
    def ai_postprocess_enabled(self) -> bool:
        return bool(self.get("postprocess.ai_enabled", False))

    @property
    def trim_trailing_punctuation(self) -> bool:
        return bool(self.get("postprocess.trim_trailing_punctuation", True))

    @property
    def trim_trailing_emoji(self) -> bool:
        return bool(self.get("postprocess.trim_trailing_emoji", False))

    @property
    def replacements(self) -> dict[str, str]:
        return {str(k): str(v) for k, v in dict(self.get("postprocess.replacements", {})).items()}

    @property
    def ai_settings(self) -> dict[str, Any]:
        settings = dict(self.get("postprocess.ai", {}))
        env_key = os.environ.get("DICTATION_AI_API_KEY")
        if env_key:
            settings["api_key"] = env_key
        return settings

    # Server
    @property
    def server_host(self) -> str:
        return str(self.get("server.host", "localhost"))

    @property
    def server_bind_host(self) -> str:
        return str(self.get("server.bind_host", "0.0.0.0"))

    @property
    def server_port(self) -> int:
        return int(self.get("server.port", 8790))

    @property
    def max_message_mb(self) -> int:
        return int(self.get("server.max_message_mb", 8))

    @property
    def external_api_enabled(self) -> bool:
        return bool(self.get("external_api.enabled", True))


# Global singleton instance
_config_loader: ConfigLoader | None = None


def get_config() -> ConfigLoader:
    """Get the global config loader instance"""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader


# Re-export logging functions
from .logging import get_logger, setup_logging  # noqa: E402, F401
