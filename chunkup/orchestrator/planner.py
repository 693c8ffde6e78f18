"""Transfer planning: single-shot vs multipart, and the static part plan."""
from typing import Iterator, Tuple

from ..models import Part, TransferPlan, UploadStrategy


def iter_byte_ranges(total_bytes: int, part_size: int) -> Iterator[Tuple[int, int]]:
    """Yield half-open [start, end) ranges covering [0, total_bytes)."""
    for start in range(0, total_bytes, part_size):
        yield start, min(start + part_size, total_bytes)


def plan_transfer(total_bytes: int, single_shot_threshold: int, part_size: int) -> TransferPlan:
    """
    Decide strategy and compute the ordered part list.

    Files up to the threshold, and empty files, go in one PUT. Larger files
    are cut in part_size strides with a truncated last part.
    """
    if total_bytes < 0:
        raise ValueError(f"total_bytes must be >= 0, got {total_bytes}")
    if part_size <= 0:
        raise ValueError(f"part_size must be > 0, got {part_size}")

    if total_bytes == 0 or total_bytes <= single_shot_threshold:
        return TransferPlan(UploadStrategy.SINGLE_SHOT, total_bytes, part_size)

    parts = tuple(
        Part(part_number=number, start=start, end=end)
        for number, (start, end) in enumerate(iter_byte_ranges(total_bytes, part_size), 1)
    )
    return TransferPlan(UploadStrategy.MULTIPART, total_bytes, part_size, parts)
