"""Parallel upload utilities."""
import logging
import math
from typing import Optional

from ..models import MB

logger = logging.getLogger(__name__)

GB = 1024 * MB

MIN_WORKERS = 2
MAX_WORKERS = 16
BASELINE_WORKERS = 4

# (minimum Mbps, workers), checked top-down
HINT_BANDS = (
    (100, 16),
    (50, 12),
    (20, 8),
    (10, 6),
)

# (minimum bytes, workers), checked top-down
SIZE_BANDS = (
    (8 * GB, 16),
    (4 * GB, 12),
    (1 * GB, 8),
    (256 * MB, 4),
)


def _usable_hint(downlink_mbps: Optional[float]) -> Optional[float]:
    if downlink_mbps is None:
        return None
    try:
        value = float(downlink_mbps)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _hint_workers(downlink_mbps: Optional[float]) -> int:
    hint = _usable_hint(downlink_mbps)
    if hint is None:
        return BASELINE_WORKERS
    for min_mbps, workers in HINT_BANDS:
        if hint >= min_mbps:
            return workers
    return BASELINE_WORKERS


def _size_floor(total_bytes: int) -> int:
    for min_bytes, workers in SIZE_BANDS:
        if total_bytes >= min_bytes:
            return workers
    return MIN_WORKERS


def clamp_concurrency(value: int, part_count: int) -> int:
    """Clamp to [2, 16], never above the number of parts."""
    bounded = max(MIN_WORKERS, min(MAX_WORKERS, int(value)))
    return max(1, min(bounded, part_count))


def estimate_concurrency(
    total_bytes: int,
    part_count: int,
    downlink_mbps: Optional[float] = None
) -> int:
    """
    Get worker count for a multipart upload.

    Faster links and bigger files both push concurrency up; the larger of
    the two wins. Deterministic for a given (total_bytes, part_count, hint).
    """
    if part_count <= 0:
        raise ValueError("part_count must be > 0")
    return clamp_concurrency(max(_hint_workers(downlink_mbps), _size_floor(total_bytes)), part_count)


def resolve_concurrency(
    total_bytes: int,
    part_count: int,
    probe=None,
    override: Optional[int] = None
) -> int:
    """Estimate concurrency using an optional capacity probe or explicit override."""
    if override is not None:
        return clamp_concurrency(override, part_count)

    hint = None
    if probe is not None:
        try:
            hint = probe.downlink_mbps()
        except Exception as e:
            logger.debug(f"Capacity probe failed, using size-based concurrency: {e}")
            hint = None

    workers = estimate_concurrency(total_bytes, part_count, hint)
    logger.debug(f"Concurrency {workers} for {part_count} parts (hint={hint} Mbps)")
    return workers
