"""Tests for the concurrency estimator."""
import pytest

from chunkup.models import MB
from chunkup.orchestrator.parallel import (
    GB,
    estimate_concurrency,
    resolve_concurrency,
)
from chunkup.services.capacity import StaticCapacityProbe


class TestEstimateConcurrency:
    def test_high_bandwidth_is_capped_by_part_count(self):
        assert estimate_concurrency(600 * MB, 12, downlink_mbps=500) == 12

    def test_high_bandwidth_with_many_parts(self):
        assert estimate_concurrency(600 * MB, 40, downlink_mbps=500) == 16

    def test_no_hint_uses_baseline(self):
        assert estimate_concurrency(100 * MB, 20) == 4

    @pytest.mark.parametrize("mbps,expected", [(5, 4), (10, 6), (20, 8), (50, 12), (100, 16)])
    def test_hint_bands(self, mbps, expected):
        assert estimate_concurrency(10 * MB, 100, downlink_mbps=mbps) == expected

    @pytest.mark.parametrize("size,expected", [(1 * GB, 8), (4 * GB, 12), (8 * GB, 16)])
    def test_size_raises_floor_without_hint(self, size, expected):
        assert estimate_concurrency(size, 1000) == expected

    def test_max_of_hint_and_size(self):
        assert estimate_concurrency(8 * GB, 1000, downlink_mbps=10) == 16
        assert estimate_concurrency(1 * GB, 1000, downlink_mbps=100) == 16

    @pytest.mark.parametrize("bad", [None, 0, -3, float("nan"), float("inf"), "fast"])
    def test_unusable_hints_are_ignored(self, bad):
        assert estimate_concurrency(10 * MB, 100, downlink_mbps=bad) == 4

    def test_bounds_hold_for_all_inputs(self):
        for size in (11, 50 * MB, 300 * MB, 2 * GB, 20 * GB):
            for parts in (2, 3, 7, 12, 16, 17, 500):
                for hint in (None, 1, 15, 30, 60, 1000):
                    workers = estimate_concurrency(size, parts, hint)
                    assert 2 <= workers <= min(16, parts)

    def test_single_part_never_gets_more_than_one_worker(self):
        assert estimate_concurrency(20 * MB, 1, downlink_mbps=1000) == 1

    def test_deterministic(self):
        assert estimate_concurrency(3 * GB, 50, 42.0) == estimate_concurrency(3 * GB, 50, 42.0)


class TestResolveConcurrency:
    def test_uses_probe(self):
        assert resolve_concurrency(600 * MB, 12, StaticCapacityProbe(500)) == 12

    def test_failing_probe_degrades_to_size_floor(self):
        class BrokenProbe:
            def downlink_mbps(self):
                raise RuntimeError("no network information")

        assert resolve_concurrency(1 * GB, 100, BrokenProbe()) == 8

    def test_override_is_clamped(self):
        assert resolve_concurrency(100 * MB, 10, override=64) == 10
        assert resolve_concurrency(100 * MB, 10, override=1) == 2
