from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional


class SchedulerState(Enum):
    IDLE = "idle"
    ARMED = "armed"


class CommitScheduler:
    """Forces an utterance commit after ``horizon`` ticks without progress.

    Two loop timers run in lockstep: the deadline timer fires the commit and the
    tick timer drives the visible countdown once per ``tick_interval_s``.
    ``on_deadline`` performs the commit and returns whether recording is still
    active; if so the scheduler re-arms itself after ``grace_s``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_deadline: Callable[[], bool],
        horizon: int = 10,
        tick_interval_s: float = 1.0,
        grace_s: float = 0.1,
        on_countdown: Optional[Callable[[int], None]] = None,
    ) -> None:
        self._loop = loop
        self._on_deadline = on_deadline
        self._horizon = max(1, horizon)
        self._tick_interval_s = tick_interval_s
        self._grace_s = grace_s
        self._on_countdown = on_countdown
        self._deadline_handle: Optional[asyncio.TimerHandle] = None
        self._tick_handle: Optional[asyncio.TimerHandle] = None
        self._rearm_handle: Optional[asyncio.TimerHandle] = None
        self._countdown = 0
        # Bumped on every cancel(); a pending grace re-arm from an older
        # generation is dropped.
        self._generation = 0
        self.deadlines_fired = 0

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.ARMED if self._deadline_handle is not None else SchedulerState.IDLE

    @property
    def countdown(self) -> int:
        return self._countdown

    @property
    def horizon(self) -> int:
        return self._horizon

    def arm(self) -> None:
        if self._tick_handle is None:
            self._set_countdown(self._horizon)
            self._tick_handle = self._loop.call_later(self._tick_interval_s, self._tick)
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        self._deadline_handle = self._loop.call_later(self._horizon * self._tick_interval_s, self._fire_deadline)

    def reset(self) -> None:
        self._stop_timers()
        self.arm()

    def cancel(self) -> None:
        self._generation += 1
        self._stop_timers()
        if self._rearm_handle is not None:
            self._rearm_handle.cancel()
            self._rearm_handle = None
        self._set_countdown(0)

    def arm_after_grace(self) -> None:
        if self._rearm_handle is not None:
            self._rearm_handle.cancel()
        self._rearm_handle = self._loop.call_later(self._grace_s, self._rearm, self._generation)

    def _rearm(self, generation: int) -> None:
        self._rearm_handle = None
        if generation != self._generation:
            return
        self.arm()

    def _tick(self) -> None:
        self._tick_handle = None
        remaining = max(0, self._countdown - 1)
        self._set_countdown(remaining)
        if remaining > 0:
            self._tick_handle = self._loop.call_later(self._tick_interval_s, self._tick)

    def _fire_deadline(self) -> None:
        self._deadline_handle = None
        self.deadlines_fired += 1
        logging.info("commit_deadline_reached horizon=%d", self._horizon)
        try:
            still_recording = bool(self._on_deadline())
        except Exception:  # noqa: BLE001 - timer boundary
            logging.exception("commit_deadline_failed")
            still_recording = False
        self.cancel()
        if still_recording:
            self.arm_after_grace()

    def _stop_timers(self) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _set_countdown(self, value: int) -> None:
        if value == self._countdown:
            return
        self._countdown = value
        if self._on_countdown is not None:
            self._on_countdown(value)
