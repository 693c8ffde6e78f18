"""Progress aggregation across concurrently uploading parts."""
import time
from typing import Callable, Dict

from ..models import ProgressSnapshot


class ProgressAggregator:
    """
    Running byte total for one session.

    Each part keeps a high-water mark; a report only adds the positive
    delta over it. Replayed, out-of-order and restarted (retried) reports
    therefore never double count or move the total backwards. Reports run
    on the event loop without awaiting, so each update is applied whole.
    """

    def __init__(self, total_bytes: int, clock: Callable[[], float] = time.monotonic):
        if total_bytes < 0:
            raise ValueError("total_bytes must be >= 0")
        self._total = total_bytes
        self._clock = clock
        self._per_part: Dict[int, int] = {}
        self._transferred = 0
        self._started_at = clock()
        self._finished = False
        self._frozen = False

    @property
    def total_bytes(self) -> int:
        return self._total

    @property
    def transferred_bytes(self) -> int:
        return self._transferred

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._started_at)

    def report(self, part_number: int, transferred: int, part_size: int) -> int:
        """Record bytes sent so far for a part. Returns the delta applied."""
        if self._frozen:
            return 0
        value = max(0, min(transferred, part_size))
        delta = value - self._per_part.get(part_number, 0)
        if delta <= 0:
            return 0
        self._per_part[part_number] = value
        self._transferred = min(self._total, self._transferred + delta)
        return delta

    def current_percent(self) -> int:
        if self._total == 0:
            return 100 if self._finished else 0
        return self._transferred * 100 // self._total

    def finish(self) -> None:
        """Mark the transfer done; only matters for empty files."""
        self._finished = True

    def freeze(self) -> None:
        """Stop accepting reports after a failure; the last value stays visible."""
        self._frozen = True

    def snapshot(self) -> ProgressSnapshot:
        elapsed = self.elapsed
        speed = self._transferred / elapsed if elapsed > 0 else 0.0
        remaining = self._total - self._transferred
        eta = remaining / speed if speed > 0 else None
        return ProgressSnapshot(
            transferred_bytes=self._transferred,
            total_bytes=self._total,
            percent=self.current_percent(),
            bytes_per_second=speed,
            eta_seconds=eta,
        )
