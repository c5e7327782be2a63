"""
tests/test_scheduler.py — PollScheduler Unit Tests
===================================================

These run on the real event loop; jobs block on ``asyncio.Event`` so the
interleavings are deterministic without sleeping.
"""

from __future__ import annotations

import asyncio

from conftest import run_async
from selectstart.services.scheduler import PollScheduler


class GatedJob:
    """Job that blocks until released, counting its runs."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.runs = 0

    async def __call__(self) -> None:
        self.runs += 1
        self.started.set()
        await self.release.wait()


class TestStartStop:

    def test_start_is_idempotent(self):
        async def _inner():
            job = GatedJob()
            job.release.set()
            sched = PollScheduler("ranks", job)
            first = sched.start(3600)
            second = sched.start(3600)
            await job.started.wait()
            await sched.stop()
            return first, second, sched

        first, second, sched = run_async(_inner())
        assert first is True
        assert second is False
        assert not sched.running

    def test_stop_waits_for_in_flight_cycle(self):
        async def _inner():
            job = GatedJob()
            sched = PollScheduler("awards", job)
            sched.start(3600)
            await job.started.wait()

            stopping = asyncio.create_task(sched.stop())
            await asyncio.sleep(0)
            still_running = sched.in_cycle and not stopping.done()

            job.release.set()
            await stopping
            return still_running, sched

        still_running, sched = run_async(_inner())
        assert still_running
        assert sched.cycles_completed == 1
        assert not sched.in_cycle

    def test_delayed_start_stopped_before_first_cycle(self):
        async def _inner():
            job = GatedJob()
            sched = PollScheduler("ranks", job)
            sched.start(3600, run_immediately=False)
            await asyncio.sleep(0)
            await sched.stop()
            return job

        assert run_async(_inner()).runs == 0

    def test_stop_without_start_is_noop(self):
        run_async(PollScheduler("idle", GatedJob()).stop())

    def test_cycles_repeat_at_interval(self):
        async def _inner():
            runs = 0
            done = asyncio.Event()

            async def job():
                nonlocal runs
                runs += 1
                if runs == 3:
                    done.set()

            sched = PollScheduler("fast", job)
            sched.start(0.01)
            await asyncio.wait_for(done.wait(), timeout=5)
            await sched.stop()
            return sched

        assert run_async(_inner()).cycles_completed >= 3


class TestSingleFlight:

    def test_overlapping_run_once_is_skipped(self):
        async def _inner():
            job = GatedJob()
            sched = PollScheduler("ranks", job)
            first = asyncio.create_task(sched.run_once())
            await job.started.wait()
            second = await sched.run_once()
            job.release.set()
            return await first, second, job

        first, second, job = run_async(_inner())
        assert first is True
        assert second is False
        assert job.runs == 1

    def test_failed_cycle_is_counted_and_loop_survives(self):
        async def _inner():
            calls = 0
            done = asyncio.Event()

            async def job():
                nonlocal calls
                calls += 1
                if calls == 1:
                    raise RuntimeError("database went away")
                done.set()

            sched = PollScheduler("awards", job)
            sched.start(0.01)
            await asyncio.wait_for(done.wait(), timeout=5)
            await sched.stop()
            return sched

        sched = run_async(_inner())
        assert sched.cycles_failed == 1
        assert sched.cycles_completed >= 1
