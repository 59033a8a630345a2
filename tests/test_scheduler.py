"""Tests for the game-time scheduler."""

import asyncio

import pytest

from mission_engine.state.scheduler import (
    GameTimeScheduler,
    ManualClock,
    ScheduledTimer,
    normalize_delay,
    real_deadline,
    remaining_game_time,
)


class TestPureHelpers:
    def test_negative_and_missing_delays_are_zero(self):
        """normalize_delay clamps to zero."""
        assert normalize_delay(-5) == 0
        assert normalize_delay(None) == 0
        assert normalize_delay(250) == 250

    def test_remaining_game_time(self):
        """Remaining time shrinks at the armed speed and never goes negative."""
        timer = ScheduledTimer(1, lambda: None, started_at=1000, delay_ms=10_000, speed=2, seq=0)
        assert remaining_game_time(timer, 1000) == 10_000
        assert remaining_game_time(timer, 3000) == 6_000
        assert remaining_game_time(timer, 99_000) == 0

    def test_real_deadline(self):
        """Real deadline is start + game delay / speed."""
        timer = ScheduledTimer(1, lambda: None, started_at=500, delay_ms=10_000, speed=10, seq=0)
        assert real_deadline(timer) == 1500


class TestScheduling:
    def test_fires_after_delay(self, clock, scheduler):
        """Callbacks fire once their real deadline passes."""
        fired = []
        scheduler.schedule(lambda: fired.append(1), 1000)

        clock.advance(999)
        assert scheduler.tick() == 0
        clock.advance(1)
        assert scheduler.tick() == 1
        assert fired == [1]

    def test_never_fires_twice(self, clock, scheduler):
        """A fired timer is gone."""
        fired = []
        scheduler.schedule(lambda: fired.append(1), 10)
        clock.advance(50)
        scheduler.tick()
        scheduler.tick()
        assert fired == [1]
        assert scheduler.pending_count == 0

    def test_speed_shortens_real_delay(self, clock):
        """At 10x, a 10s game delay takes 1s of real time."""
        scheduler = GameTimeScheduler(clock, speed=10)
        fired = []
        scheduler.schedule(lambda: fired.append(1), 10_000)

        clock.advance(999)
        scheduler.tick()
        assert fired == []
        clock.advance(1)
        scheduler.tick()
        assert fired == [1]

    def test_fires_in_deadline_then_schedule_order(self, clock, scheduler):
        """Earlier deadlines first; ties keep scheduling order."""
        order = []
        scheduler.schedule(lambda: order.append("late"), 300)
        scheduler.schedule(lambda: order.append("tie-1"), 100)
        scheduler.schedule(lambda: order.append("tie-2"), 100)

        clock.advance(1000)
        scheduler.tick()

        assert order == ["tie-1", "tie-2", "late"]

    def test_cancel(self, clock, scheduler):
        """Cancelled timers never fire; cancel reports whether it removed one."""
        fired = []
        handle = scheduler.schedule(lambda: fired.append(1), 100)

        assert scheduler.cancel(handle) is True
        assert scheduler.cancel(handle) is False
        assert scheduler.cancel(None) is False

        clock.advance(200)
        scheduler.tick()
        assert fired == []

    def test_callback_cancelling_a_due_timer(self, clock, scheduler):
        """A due timer cancelled by an earlier callback in the same tick is skipped."""
        fired = []
        second = None

        def first():
            fired.append("first")
            scheduler.cancel(second)

        scheduler.schedule(first, 10)
        second = scheduler.schedule(lambda: fired.append("second"), 20)

        clock.advance(100)
        assert scheduler.tick() == 1
        assert fired == ["first"]

    def test_zero_delay_timer_from_callback_waits_for_next_tick(self, clock, scheduler):
        """Timers scheduled during tick() are not fired by the same tick."""
        fired = []
        scheduler.schedule(lambda: scheduler.schedule(lambda: fired.append("child"), 0), 0)

        scheduler.tick()
        assert fired == []
        scheduler.tick()
        assert fired == ["child"]

    def test_invalid_speed_rejected(self, clock):
        """Non-positive speeds raise ValueError."""
        with pytest.raises(ValueError):
            GameTimeScheduler(clock, speed=0)
        scheduler = GameTimeScheduler(clock)
        with pytest.raises(ValueError):
            scheduler.reschedule_all(-1)


class TestRescheduling:
    def test_reschedule_preserves_remaining_game_time(self, clock, scheduler):
        """Half-elapsed 10s timer at 1x finishes 0.5s after switching to 10x."""
        fired = []
        scheduler.schedule(lambda: fired.append(1), 10_000)

        clock.advance(5_000)
        scheduler.reschedule_all(10)
        clock.advance(499)
        scheduler.tick()
        assert fired == []

        clock.advance(1)
        scheduler.tick()
        assert fired == [1]

    def test_reschedule_slower_delays_firing(self, clock):
        """Slowing down never fires a timer early."""
        scheduler = GameTimeScheduler(clock, speed=10)
        fired = []
        handle = scheduler.schedule(lambda: fired.append(1), 10_000)

        clock.advance(500)          # 5000 game ms elapsed
        scheduler.reschedule_all(1)
        assert scheduler.remaining(handle) == 5_000

        clock.advance(4_999)
        scheduler.tick()
        assert fired == []
        clock.advance(1)
        scheduler.tick()
        assert fired == [1]

    def test_reschedule_keeps_handles(self, clock, scheduler):
        """Handles stay valid across a speed change."""
        handle = scheduler.schedule(lambda: None, 1000)
        scheduler.reschedule_all(4)
        assert scheduler.is_pending(handle)
        assert scheduler.cancel(handle)

    def test_new_timers_use_current_speed(self, clock, scheduler):
        """After reschedule_all, new timers arm at the new speed."""
        scheduler.reschedule_all(2)
        fired = []
        scheduler.schedule(lambda: fired.append(1), 1000)
        clock.advance(500)
        scheduler.tick()
        assert fired == [1]

    def test_next_deadline(self, clock, scheduler):
        """next_deadline reports the earliest real deadline."""
        assert scheduler.next_deadline() is None
        scheduler.schedule(lambda: None, 300)
        scheduler.schedule(lambda: None, 100)
        assert scheduler.next_deadline() == 100


class TestRunLoop:
    def test_run_ticks_until_stopped(self):
        """run() drives tick() and exits after stop()."""
        clock = ManualClock()
        scheduler = GameTimeScheduler(clock)
        fired = []

        def stop():
            fired.append(1)
            scheduler.stop()

        scheduler.schedule(stop, 0)
        asyncio.run(scheduler.run(poll_interval=0))

        assert fired == [1]
