"""Matilda Dictation - recognition session orchestration for speech input."""

from importlib import metadata
from importlib import import_module
from pathlib import Path
import tomllib
from typing import TYPE_CHECKING


def _get_version() -> str:
    try:
        return metadata.version("goobits-matilda-dictation")
    except metadata.PackageNotFoundError:
        pass

    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return str(data["project"]["version"])
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        return "unknown"


__version__ = _get_version()

if TYPE_CHECKING:
    from .adapters.multi_session import MultiSessionAdapter
    from .adapters.standard import StandardRecognizerAdapter
    from .core.config import ConfigLoader, get_config
    from .recognition.service import RecognitionService
    from .recognition.session import RecognitionSession
    from .recognition.timeout_policy import TimeoutPolicy

_LAZY_EXPORTS = {
    "MultiSessionAdapter": (".adapters.multi_session", "MultiSessionAdapter"),
    "StandardRecognizerAdapter": (".adapters.standard", "StandardRecognizerAdapter"),
    "ConfigLoader": (".core.config", "ConfigLoader"),
    "get_config": (".core.config", "get_config"),
    "RecognitionService": (".recognition.service", "RecognitionService"),
    "RecognitionSession": (".recognition.session", "RecognitionSession"),
    "TimeoutPolicy": (".recognition.timeout_policy", "TimeoutPolicy"),
}


def __getattr__(name):
    if name in {"adapters", "core", "recognition", "server"}:
        module = import_module(f".{name}", __name__)
        globals()[name] = module
        return module

    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


__all__ = list(_LAZY_EXPORTS)
