"""
Game-time scheduler.

Converts game-time delays into real-time deadlines using the current speed
multiplier (real delay = game delay / speed). Timers are cooperative: nothing
fires until the host calls tick(), which keeps every callback on the single
logical thread that also runs bus dispatch.

Changing speed with reschedule_all() re-arms every pending timer with its
remaining game time, so a speed change never drops or double-fires a timer.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of real time in milliseconds."""

    def now(self) -> float:
        ...


class MonotonicClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic() * 1000.0


class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and by hosts that drive the engine from their own frame loop.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, ms: float) -> float:
        self._now += ms
        return self._now

    def set(self, ms: float) -> None:
        self._now = float(ms)


@dataclass
class ScheduledTimer:
    """
    A pending callback.

    Attributes:
        timer_id: Handle returned by schedule()
        callback: Zero-argument callable to run when due
        started_at: Real time (ms) the current arming began
        delay_ms: Game-time delay remaining as of started_at
        speed: Speed multiplier the timer was armed at
        seq: Scheduling order, used to break deadline ties
    """

    timer_id: int
    callback: Callable[[], None]
    started_at: float
    delay_ms: float
    speed: float
    seq: int


def normalize_delay(delay_ms: float | None) -> float:
    """Negative or missing delays are treated as zero."""
    if delay_ms is None or delay_ms < 0:
        return 0.0
    return float(delay_ms)


def remaining_game_time(timer: ScheduledTimer, now: float) -> float:
    """Game time left before a timer is due, never negative."""
    elapsed_game = (now - timer.started_at) * timer.speed
    return max(0.0, timer.delay_ms - elapsed_game)


def real_deadline(timer: ScheduledTimer) -> float:
    """Real time (ms) at which a timer becomes due."""
    return timer.started_at + timer.delay_ms / timer.speed


def _check_speed(speed: float) -> float:
    if speed is None or speed <= 0:
        raise ValueError(f"Time speed must be positive, got {speed!r}")
    return float(speed)


class GameTimeScheduler:
    """
    Cooperative game-time timer wheel.

    Usage:
        scheduler = GameTimeScheduler(clock=ManualClock())
        handle = scheduler.schedule(callback, game_delay_ms=5000, speed=1)
        scheduler.reschedule_all(10)    # remaining time now runs 10x faster
        scheduler.tick()                # fires whatever is due
    """

    def __init__(self, clock: Clock | None = None, speed: float = 1.0):
        self.clock = clock or MonotonicClock()
        self._speed = _check_speed(speed)
        self._timers: dict[int, ScheduledTimer] = {}
        self._ids = itertools.count(1)
        self._seq = itertools.count()
        self._running = False

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    def now(self) -> float:
        return self.clock.now()

    def schedule(
        self,
        callback: Callable[[], None],
        game_delay_ms: float | None = 0,
        speed: float | None = None,
    ) -> int:
        """
        Schedule a callback after a game-time delay.

        Args:
            callback: Zero-argument callable
            game_delay_ms: Delay in game milliseconds (negative/None -> 0)
            speed: Speed multiplier to arm at (defaults to the current speed)

        Returns:
            Timer handle for cancel()
        """
        timer = ScheduledTimer(
            timer_id=next(self._ids),
            callback=callback,
            started_at=self.now(),
            delay_ms=normalize_delay(game_delay_ms),
            speed=_check_speed(self._speed if speed is None else speed),
            seq=next(self._seq),
        )
        self._timers[timer.timer_id] = timer
        return timer.timer_id

    def cancel(self, timer_id: int | None) -> bool:
        """Cancel a pending timer. Returns False if it already fired or never existed."""
        if timer_id is None:
            return False
        return self._timers.pop(timer_id, None) is not None

    def cancel_all(self) -> int:
        count = len(self._timers)
        self._timers.clear()
        return count

    def is_pending(self, timer_id: int) -> bool:
        return timer_id in self._timers

    def remaining(self, timer_id: int) -> float | None:
        """Remaining game time for a timer, or None if it is not pending."""
        timer = self._timers.get(timer_id)
        if timer is None:
            return None
        return remaining_game_time(timer, self.now())

    def set_speed(self, speed: float) -> None:
        """Change the default speed for new timers without touching pending ones."""
        self._speed = _check_speed(speed)

    def reschedule_all(self, new_speed: float) -> int:
        """
        Re-arm every pending timer at a new speed.

        Remaining game time is measured at each timer's old speed; the timer
        keeps its handle and restarts now with that remainder.

        Returns:
            Number of timers re-armed
        """
        new_speed = _check_speed(new_speed)
        now = self.now()
        for timer in self._timers.values():
            timer.delay_ms = remaining_game_time(timer, now)
            timer.started_at = now
            timer.speed = new_speed
        self._speed = new_speed
        if self._timers:
            logger.debug(f"Rescheduled {len(self._timers)} timers at speed {new_speed}x")
        return len(self._timers)

    def next_deadline(self) -> float | None:
        """Earliest real deadline among pending timers."""
        if not self._timers:
            return None
        return min(real_deadline(t) for t in self._timers.values())

    def tick(self) -> int:
        """
        Fire every timer whose deadline has passed.

        Due timers are collected before any callback runs, so timers created
        by those callbacks (even with zero delay) wait for the next tick.

        Returns:
            Number of callbacks fired
        """
        now = self.now()
        due = sorted(
            (t for t in self._timers.values() if real_deadline(t) <= now),
            key=lambda t: (real_deadline(t), t.seq),
        )
        fired = 0
        for timer in due:
            # A previous callback may have cancelled this one
            if self._timers.pop(timer.timer_id, None) is None:
                continue
            timer.callback()
            fired += 1
        return fired

    async def run(self, poll_interval: float = 0.05) -> None:
        """Drive tick() from an asyncio loop until stop() is called."""
        self._running = True
        while self._running:
            self.tick()
            await asyncio.sleep(poll_interval)

    def stop(self) -> None:
        self._running = False
