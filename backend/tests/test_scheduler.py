"""
Tests for the periodic sweep runner.
"""

import asyncio

import pytest

from reservation_engine.services.scheduler import PeriodicSweep, SweepReport


class CountingSweep:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.runs = 0

    async def run_once(self) -> SweepReport:
        self.runs += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        return SweepReport(examined=1, applied=1, applied_ids=[self.runs])


@pytest.mark.asyncio
async def test_run_pass_returns_report():
    periodic = PeriodicSweep("test", CountingSweep(), interval=60)

    report = await periodic.run_pass()

    assert report.applied == 1
    assert periodic.passes == 1


@pytest.mark.asyncio
async def test_failing_sweep_keeps_looping():
    sweep = CountingSweep(fail=True)
    periodic = PeriodicSweep("flaky", sweep, interval=0.01)

    assert await periodic.run_pass() is None

    periodic.start()
    assert periodic.running
    await asyncio.sleep(0.1)
    await periodic.stop()

    assert sweep.runs >= 3
    assert periodic.passes == sweep.runs
    assert not periodic.running


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task():
    sweep = CountingSweep()
    periodic = PeriodicSweep("once", sweep, interval=60)

    periodic.start()
    first_task = periodic._task
    periodic.start()

    assert periodic._task is first_task
    await periodic.stop()


@pytest.mark.asyncio
async def test_engine_builds_both_sweeps(engine):
    names = [sweep.name for sweep in engine.build_sweeps()]

    assert names == ["hold_expiry", "deposit_refund"]
