"""Tests for the ramp-up scheduler."""

from __future__ import annotations

import pytest

from reqforge.engine.scheduler import RampUpScheduler, ReleaseCommand


class TestRampUpScheduler:
    def test_no_ramp_up_releases_everyone_at_once(self):
        scheduler = RampUpScheduler(thread_count=4)
        assert scheduler.delay_per_worker == 0.0
        assert scheduler.release_offsets() == [0.0, 0.0, 0.0, 0.0]

    def test_two_workers_over_ten_seconds(self):
        scheduler = RampUpScheduler(thread_count=2, ramp_up_seconds=10.0)
        assert scheduler.delay_per_worker == 5.0
        assert scheduler.release_offsets() == [0.0, 5.0]

    def test_offsets_are_evenly_spaced(self):
        offsets = RampUpScheduler(thread_count=4, ramp_up_seconds=2.0).release_offsets()
        assert offsets == pytest.approx([0.0, 0.5, 1.0, 1.5])

    def test_last_worker_starts_before_ramp_up_ends(self):
        offsets = RampUpScheduler(thread_count=10, ramp_up_seconds=60.0).release_offsets()
        assert max(offsets) < 60.0

    def test_iter_releases_yields_commands_in_worker_order(self):
        commands = list(RampUpScheduler(thread_count=3, ramp_up_seconds=3.0).iter_releases())
        assert commands == [
            ReleaseCommand(worker_id=0, offset_seconds=0.0),
            ReleaseCommand(worker_id=1, offset_seconds=1.0),
            ReleaseCommand(worker_id=2, offset_seconds=2.0),
        ]
        assert commands[2].offset_ms == 2000.0

    def test_zero_threads(self):
        scheduler = RampUpScheduler(thread_count=0, ramp_up_seconds=5.0)
        assert scheduler.delay_per_worker == 0.0
        assert scheduler.release_offsets() == []
