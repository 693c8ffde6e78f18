"""
Network capacity probes.

All probes implement ICapacityProbe. None of them may block: a probe
that has nothing to say returns None and the estimator falls back to
size-based concurrency.
"""
import logging
import math
import os
from typing import Optional

logger = logging.getLogger(__name__)

DOWNLINK_ENV = "CHUNKUP_DOWNLINK_MBPS"


class StaticCapacityProbe:
    """Fixed hint, e.g. from a CLI flag."""

    def __init__(self, mbps: Optional[float]):
        self._mbps = mbps

    def downlink_mbps(self) -> Optional[float]:
        return self._mbps


class EnvCapacityProbe:
    """Hint read from CHUNKUP_DOWNLINK_MBPS on every call."""

    def __init__(self, env_var: str = DOWNLINK_ENV):
        self._env_var = env_var

    def downlink_mbps(self) -> Optional[float]:
        raw = os.getenv(self._env_var)
        if not raw:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"[capacity] Ignoring invalid {self._env_var}={raw!r}")
            return None


class ObservedThroughputProbe:
    """
    Hint learned from finished sessions.

    Keeps an exponential moving average of observed throughput, falling
    back to another probe until a first observation exists.
    """

    def __init__(self, fallback=None, smoothing: float = 0.5):
        self._fallback = fallback
        self._smoothing = smoothing
        self._mbps: Optional[float] = None

    def record(self, transferred_bytes: int, elapsed_seconds: float) -> None:
        if transferred_bytes <= 0 or elapsed_seconds <= 0:
            return
        mbps = transferred_bytes * 8 / elapsed_seconds / 1_000_000
        if not math.isfinite(mbps):
            return
        if self._mbps is None:
            self._mbps = mbps
        else:
            self._mbps = self._smoothing * mbps + (1 - self._smoothing) * self._mbps
        logger.debug(f"[capacity] Observed {mbps:.1f} Mbps (average {self._mbps:.1f})")

    def downlink_mbps(self) -> Optional[float]:
        if self._mbps is not None:
            return self._mbps
        if self._fallback is not None:
            return self._fallback.downlink_mbps()
        return None
