"""Playback clock: virtual time that only runs while playing."""

import threading
import time
from typing import Callable


class PlaybackClock:
    """
    Tracks the sim time of the replayed teach.

    The sim time is the accumulated wall time spent playing. It is frozen
    while paused and resumes from the same value on the next `start()`.
    """

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._lock = threading.Lock()
        self.base_sim_time = 0.0
        self.playback_started = 0.0
        self.playing = False

    def sim_time(self) -> float:
        with self._lock:
            if self.playing:
                return self.base_sim_time + (self._now() - self.playback_started)
            return self.base_sim_time

    def start(self):
        with self._lock:
            self.playback_started = self._now()
            self.playing = True

    def pause(self) -> float:
        """Accumulate the elapsed playing time and freeze the clock."""
        with self._lock:
            if self.playing:
                self.base_sim_time += self._now() - self.playback_started
                self.playing = False
            return self.base_sim_time


class Rate:
    """Sleep helper keeping a loop at a fixed frequency."""

    def __init__(self, hz: float, now: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.period = 1.0 / hz
        self._now = now
        self._sleep = sleep
        self._next_tick = now() + self.period

    def sleep(self):
        remaining = self._next_tick - self._now()
        if remaining > 0:
            self._sleep(remaining)
            self._next_tick += self.period
        else:
            # Overran the cycle, re-anchor on now
            self._next_tick = self._now() + self.period
