from __future__ import annotations

import asyncio
import unittest

from commit_scheduler import CommitScheduler, SchedulerState
from fakes import FakeLoop


class CommitSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.loop = FakeLoop()
        self.recording = True
        self.deadlines = 0
        self.countdowns: list[int] = []

    def _on_deadline(self) -> bool:
        self.deadlines += 1
        return self.recording

    def _scheduler(self, horizon: int = 10) -> CommitScheduler:
        return CommitScheduler(
            self.loop,
            on_deadline=self._on_deadline,
            horizon=horizon,
            tick_interval_s=1.0,
            grace_s=0.1,
            on_countdown=self.countdowns.append,
        )

    def test_arm_sets_countdown_to_horizon(self) -> None:
        scheduler = self._scheduler()

        scheduler.arm()

        self.assertEqual(scheduler.state, SchedulerState.ARMED)
        self.assertEqual(scheduler.countdown, 10)

    def test_countdown_reaches_zero_once_and_never_goes_negative(self) -> None:
        self.recording = False
        scheduler = self._scheduler(horizon=3)
        scheduler.arm()

        self.loop.advance(10.0)

        self.assertEqual(self.deadlines, 1)
        self.assertEqual(scheduler.deadlines_fired, 1)
        self.assertEqual(scheduler.countdown, 0)
        self.assertEqual(scheduler.state, SchedulerState.IDLE)
        self.assertEqual(self.countdowns, [3, 2, 1, 0])
        self.assertTrue(all(value >= 0 for value in self.countdowns))

    def test_reset_restores_full_horizon(self) -> None:
        scheduler = self._scheduler()
        scheduler.arm()
        self.loop.advance(6.0)
        self.assertEqual(scheduler.countdown, 4)

        scheduler.reset()

        self.assertEqual(scheduler.countdown, 10)
        self.loop.advance(9.5)
        self.assertEqual(self.deadlines, 0)
        self.loop.advance(0.5)
        self.assertEqual(self.deadlines, 1)

    def test_arm_while_armed_moves_deadline_but_keeps_countdown(self) -> None:
        scheduler = self._scheduler()
        scheduler.arm()
        self.loop.advance(3.0)

        scheduler.arm()

        self.assertEqual(scheduler.countdown, 7)
        self.loop.advance(7.0)
        self.assertEqual(self.deadlines, 0)
        self.loop.advance(3.0)
        self.assertEqual(self.deadlines, 1)

    def test_cancel_is_idempotent(self) -> None:
        scheduler = self._scheduler()
        scheduler.arm()

        scheduler.cancel()
        scheduler.cancel()

        self.assertEqual(scheduler.state, SchedulerState.IDLE)
        self.assertEqual(scheduler.countdown, 0)
        self.assertEqual(self.loop.pending_timers(), [])

    def test_deadline_rearms_after_grace_while_recording(self) -> None:
        scheduler = self._scheduler(horizon=2)
        scheduler.arm()

        self.loop.advance(2.0)
        self.assertEqual(self.deadlines, 1)
        self.assertEqual(scheduler.state, SchedulerState.IDLE)

        self.loop.advance(0.1)
        self.assertEqual(scheduler.state, SchedulerState.ARMED)
        self.assertEqual(scheduler.countdown, 2)

    def test_cancel_during_grace_prevents_rearm(self) -> None:
        scheduler = self._scheduler(horizon=2)
        scheduler.arm()
        self.loop.advance(2.0)

        scheduler.cancel()
        self.loop.advance(1.0)

        self.assertEqual(scheduler.state, SchedulerState.IDLE)
        self.assertEqual(self.deadlines, 1)

    def test_stale_grace_rearm_is_ignored(self) -> None:
        scheduler = self._scheduler()
        scheduler.arm_after_grace()
        # Mimics a commit that raced the pending re-arm.
        scheduler._generation += 1

        self.loop.advance(1.0)

        self.assertEqual(scheduler.state, SchedulerState.IDLE)

    def test_deadline_callback_failure_stops_scheduler(self) -> None:
        def broken() -> bool:
            raise RuntimeError("commit failed")

        scheduler = CommitScheduler(self.loop, on_deadline=broken, horizon=1, tick_interval_s=1.0)
        scheduler.arm()

        with self.assertLogs(level="ERROR"):
            self.loop.advance(1.0)
        self.loop.advance(1.0)

        self.assertEqual(scheduler.state, SchedulerState.IDLE)

    def test_runs_on_a_real_event_loop(self) -> None:
        fired: list[int] = []

        async def scenario() -> CommitScheduler:
            scheduler = CommitScheduler(
                asyncio.get_running_loop(),
                on_deadline=lambda: fired.append(1) is not None,
                horizon=3,
                tick_interval_s=0.01,
                grace_s=0.01,
            )
            scheduler.arm()
            await asyncio.sleep(0.1)
            return scheduler

        scheduler = asyncio.run(scenario())

        self.assertEqual(len(fired), 1)
        self.assertEqual(scheduler.countdown, 0)
        self.assertEqual(scheduler.state, SchedulerState.IDLE)


if __name__ == "__main__":
    unittest.main()
