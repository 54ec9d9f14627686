"""Engine registry and availability checks.

Keep vendor selection logic centralized here so sessions and adapters don't
need to know which vendors exist, which need credentials, or how a backup
engine gets paired with the primary.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..core.config import ConfigLoader
from .parallel import FailoverMode, ParallelEngineCoordinator
from .timeout_policy import TimeoutPolicy
from .types import EngineBuildError
from .engines.base import EngineKind, RecognitionEngine
from .engines.file_upload import BufferedFileEngine
from .engines.loopback import LoopbackEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str, ConfigLoader], RecognitionEngine]


@dataclass(frozen=True)
class VendorInfo:
    vendor: str
    kind: EngineKind
    description: str
    requires_key: bool = True
    upload_compatible: bool = False

    @property
    def local(self) -> bool:
        return self.kind is EngineKind.LOCAL


VENDORS: dict[str, VendorInfo] = {
    info.vendor: info
    for info in (
        VendorInfo("volc", EngineKind.STREAMING, "Volcengine streaming ASR"),
        VendorInfo("siliconflow", EngineKind.FILE, "SiliconFlow file ASR", upload_compatible=True),
        VendorInfo("elevenlabs", EngineKind.STREAMING, "ElevenLabs realtime ASR"),
        VendorInfo("openai", EngineKind.FILE, "OpenAI transcription API", upload_compatible=True),
        VendorInfo("dashscope", EngineKind.STREAMING, "Alibaba DashScope streaming ASR"),
        VendorInfo("gemini", EngineKind.FILE, "Google Gemini audio understanding"),
        VendorInfo("soniox", EngineKind.STREAMING, "Soniox realtime ASR"),
        VendorInfo("zhipu", EngineKind.FILE, "Zhipu GLM-ASR", upload_compatible=True),
        VendorInfo("sensevoice", EngineKind.LOCAL, "SenseVoice on-device model", requires_key=False),
        VendorInfo("funasr_nano", EngineKind.LOCAL, "FunASR Nano on-device model", requires_key=False),
        VendorInfo("telespeech", EngineKind.LOCAL, "TeleSpeech on-device model", requires_key=False),
        VendorInfo("paraformer", EngineKind.LOCAL, "Paraformer on-device model", requires_key=False),
        VendorInfo("mock", EngineKind.STREAMING, "Loopback engine for connectivity tests", requires_key=False),
    )
}

VENDOR_ALIASES = {"zipformer": "paraformer", "funasr": "funasr_nano"}

_FACTORIES: dict[str, EngineFactory] = {}


def resolve_vendor(vendor: str) -> str:
    """Normalize a vendor id, following legacy aliases."""
    key = (vendor or "").strip().lower()
    key = VENDOR_ALIASES.get(key, key)
    if key not in VENDORS:
        raise EngineBuildError(vendor, "unknown vendor")
    return key


def register_engine_factory(vendor: str, factory: EngineFactory) -> None:
    """Install the engine implementation for a vendor.

    Streaming vendor clients and on-device model wrappers live outside this
    package and plug in here.
    """
    _FACTORIES[resolve_vendor(vendor)] = factory
    logger.debug("Registered engine factory for %s", vendor)


def unregister_engine_factory(vendor: str) -> None:
    _FACTORIES.pop(resolve_vendor(vendor), None)


def has_credentials(vendor: str, config: ConfigLoader) -> bool:
    """Return whether ``vendor`` has what it needs to authenticate."""
    try:
        info = VENDORS[resolve_vendor(vendor)]
    except EngineBuildError:
        return False
    if not info.requires_key:
        return True
    return bool(config.vendor_api_key(info.vendor))


def is_vendor_available(vendor: str, config: ConfigLoader) -> bool:
    """Return whether an engine for ``vendor`` can be built right now."""
    try:
        info = VENDORS[resolve_vendor(vendor)]
    except EngineBuildError:
        return False
    if info.vendor not in _FACTORIES and info.vendor != "mock" and not info.upload_compatible:
        return False
    return has_credentials(info.vendor, config)


def get_available_vendors(config: ConfigLoader) -> list[str]:
    """Return list of vendors with a buildable engine."""
    return [vendor for vendor in VENDORS if is_vendor_available(vendor, config)]


def get_vendor_info() -> dict[str, dict]:
    """Return detailed info about all vendors."""
    return {
        info.vendor: {
            "kind": info.kind.value,
            "local": info.local,
            "requires_key": info.requires_key,
            "description": info.description,
            "installed": info.vendor in _FACTORIES or info.upload_compatible or info.vendor == "mock",
        }
        for info in VENDORS.values()
    }


def build_engine(vendor: str, config: ConfigLoader) -> RecognitionEngine:
    """Build a single engine for ``vendor``.

    Raises:
        EngineBuildError: unknown vendor, missing credentials or no implementation

    """
    key = resolve_vendor(vendor)
    info = VENDORS[key]

    if not has_credentials(key, config):
        raise EngineBuildError(key, "missing API key")

    factory = _FACTORIES.get(key)
    if factory is not None:
        try:
            return factory(key, config)
        except EngineBuildError:
            raise
        except Exception as e:
            raise EngineBuildError(key, str(e)) from e

    if key == "mock":
        settings = config.vendor_settings("mock")
        return LoopbackEngine(text=str(settings.get("text", "External speech API connected (mock)")))

    if info.upload_compatible:
        settings = config.vendor_settings(key)
        base_url = settings.get("base_url")
        model = settings.get("model")
        if not base_url or not model:
            raise EngineBuildError(key, "base_url and model must be configured")
        return BufferedFileEngine(
            vendor=key,
            api_key=config.vendor_api_key(key),
            base_url=str(base_url),
            model=str(model),
            language=config.language,
            timeout_s=float(settings.get("timeout_s", 60.0)),
        )

    raise EngineBuildError(key, "no engine implementation installed")


def should_use_backup(primary_vendor: str, config: ConfigLoader) -> bool:
    """Backup gate: enabled, a different vendor, and credentials present."""
    backup_vendor = config.backup_vendor
    if not config.backup_enabled or not backup_vendor:
        return False
    try:
        if resolve_vendor(backup_vendor) == resolve_vendor(primary_vendor):
            return False
    except EngineBuildError:
        return False
    return has_credentials(backup_vendor, config)


def build_session_engine(
    config: ConfigLoader,
    vendor: str | None = None,
    timeout_policy: TimeoutPolicy | None = None,
) -> RecognitionEngine:
    """Build the engine a session should drive.

    Wraps the primary in a ParallelEngineCoordinator when the backup gate
    passes. A backup that fails to build degrades to primary-only.
    """
    primary_vendor = vendor or config.vendor
    primary = build_engine(primary_vendor, config)
    if not should_use_backup(primary_vendor, config):
        return primary

    try:
        backup = build_engine(config.backup_vendor, config)
    except EngineBuildError as e:
        logger.warning("Backup engine unavailable, using primary only: %s", e)
        return primary

    try:
        mode = FailoverMode(config.failover_mode)
    except ValueError:
        logger.warning("Unknown failover mode %r, using race", config.failover_mode)
        mode = FailoverMode.RACE
    logger.info("Parallel engines: primary=%s backup=%s mode=%s", primary.vendor, backup.vendor, mode.value)
    return ParallelEngineCoordinator(primary, backup, timeout_policy=timeout_policy, mode=mode)
