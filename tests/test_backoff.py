"""Tests for the worker's adaptive idle delay."""

import pytest

from keyword_monitor.config.monitoring import MonitoringConfig
from keyword_monitor.scheduler.backoff import IdleBackoff, WorkerState


def make_backoff(**kwargs) -> IdleBackoff:
    params = dict(initial=10.0, floor=5.0, ceiling=60.0, threshold=3, growth=1.5, decay=0.9)
    params.update(kwargs)
    return IdleBackoff(**params)


class TestIdleBackoff:

    def test_starts_idle_at_initial_delay(self):
        backoff = make_backoff()
        assert backoff.delay == 10.0
        assert backoff.state == WorkerState.IDLE

    def test_initial_delay_clamped_to_bounds(self):
        assert make_backoff(initial=1.0).delay == 5.0
        assert make_backoff(initial=500.0).delay == 60.0

    def test_floor_above_ceiling_rejected(self):
        with pytest.raises(ValueError):
            make_backoff(floor=30.0, ceiling=10.0)

    def test_no_growth_until_threshold_exceeded(self):
        backoff = make_backoff()
        assert [backoff.record(0) for _ in range(3)] == [10.0, 10.0, 10.0]
        assert backoff.record(0) == pytest.approx(15.0)
        assert backoff.consecutive_empty == 4

    def test_empty_cycles_never_decrease_delay_and_stop_at_ceiling(self):
        backoff = make_backoff()
        delays = [backoff.record(0) for _ in range(30)]

        assert delays == sorted(delays)
        assert max(delays) == 60.0
        assert all(5.0 <= d <= 60.0 for d in delays)

    def test_work_decays_toward_floor(self):
        backoff = make_backoff()
        for _ in range(10):
            backoff.record(0)
        idle_delay = backoff.delay

        after_work = backoff.record(3)

        assert after_work == pytest.approx(idle_delay * 0.9)
        assert backoff.consecutive_empty == 0

        for _ in range(100):
            backoff.record(1)
        assert backoff.delay == 5.0

    def test_work_resets_empty_streak(self):
        backoff = make_backoff()
        for _ in range(3):
            backoff.record(0)
        backoff.record(1)
        # Streak starts over, so the next three empties do not grow the delay
        delay = backoff.delay
        assert [backoff.record(0) for _ in range(3)] == [delay, delay, delay]

    def test_state_transitions(self):
        backoff = make_backoff()
        backoff.mark_busy()
        assert backoff.state == WorkerState.BUSY
        backoff.record(2)
        assert backoff.state == WorkerState.IDLE

    def test_non_adaptive_delay_is_fixed(self):
        backoff = make_backoff(adaptive=False)
        assert {backoff.record(n) for n in (0, 0, 0, 0, 0, 5, 0)} == {10.0}

    def test_reset(self):
        backoff = make_backoff()
        for _ in range(10):
            backoff.record(0)
        backoff.reset()
        assert backoff.delay == 10.0
        assert backoff.consecutive_empty == 0

    def test_from_config(self):
        config = MonitoringConfig(
            worker_polling_interval=20.0,
            idle_delay_floor=2.0,
            idle_delay_ceiling=40.0,
            max_consecutive_empty_batches=1,
        )
        backoff = IdleBackoff.from_config(config)

        assert (backoff.delay, backoff.floor, backoff.ceiling) == (20.0, 2.0, 40.0)
        assert backoff.threshold == 1
        assert backoff.growth == 1.5
        assert backoff.decay == 0.9
