"""Processing deadlines for recognition sessions.

The deadline is how long a session may sit in the processing phase, after
recording stopped, before it gives up on the engine. It grows with the
amount of audio the engine has to work through and never drops below a
floor, so near-silent utterances still get a usable window.
"""

import math
from dataclasses import dataclass
from typing import Any

LOCAL_MODEL_READY_WAIT_MAX_MS = 60_000

PRIMARY_SWITCH_MIN_MS = 6_000
PRIMARY_SWITCH_MAX_MS = 15_000


@dataclass(frozen=True)
class TimeoutPolicy:
    """Pure deadline calculator.

    deadline(audio_ms) = max(floor_ms, base_ms + ceil(audio_ms * per_audio_ratio))
    plus ``parallel_slack_ms`` when a backup engine races the primary.
    """

    base_ms: int = 8000
    per_audio_ratio: float = 0.5
    parallel_slack_ms: int = 2000
    floor_ms: int = 8000
    primary_switch_min_ms: int = PRIMARY_SWITCH_MIN_MS
    primary_switch_max_ms: int = PRIMARY_SWITCH_MAX_MS

    def __post_init__(self) -> None:
        if self.per_audio_ratio < 0:
            raise ValueError(f"per_audio_ratio must be >= 0, got {self.per_audio_ratio}")
        if self.parallel_slack_ms < 0:
            raise ValueError(f"parallel_slack_ms must be >= 0, got {self.parallel_slack_ms}")
        if self.primary_switch_min_ms > self.primary_switch_max_ms:
            raise ValueError("primary_switch_min_ms must not exceed primary_switch_max_ms")

    def deadline(self, audio_ms: int | float, parallel: bool = False) -> int:
        """Allowed processing time in milliseconds for ``audio_ms`` of audio."""
        audio = max(0.0, float(audio_ms))
        timeout = max(self.floor_ms, self.base_ms + math.ceil(audio * self.per_audio_ratio))
        if parallel:
            timeout += self.parallel_slack_ms
        return int(timeout)

    def primary_switch_timeout(self, audio_ms: int | float) -> int:
        """How long a streaming primary may stay silent after stop before the backup is trusted."""
        half = self.deadline(audio_ms) // 2
        return min(max(half, self.primary_switch_min_ms), self.primary_switch_max_ms)

    @classmethod
    def from_config(cls, timeouts: dict[str, Any]) -> "TimeoutPolicy":
        """Build a policy from the ``timeouts`` config group."""
        defaults = cls()
        return cls(
            base_ms=int(timeouts.get("base_ms", defaults.base_ms)),
            per_audio_ratio=float(timeouts.get("per_audio_ratio", defaults.per_audio_ratio)),
            parallel_slack_ms=int(timeouts.get("parallel_slack_ms", defaults.parallel_slack_ms)),
            floor_ms=int(timeouts.get("floor_ms", defaults.floor_ms)),
            primary_switch_min_ms=int(timeouts.get("primary_switch_min_ms", defaults.primary_switch_min_ms)),
            primary_switch_max_ms=int(timeouts.get("primary_switch_max_ms", defaults.primary_switch_max_ms)),
        )


def deadline(audio_ms: int | float, parallel: bool = False) -> int:
    """Deadline under the default policy."""
    return _DEFAULT_POLICY.deadline(audio_ms, parallel=parallel)


_DEFAULT_POLICY = TimeoutPolicy()
