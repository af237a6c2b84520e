"""Tests for the countdown timer."""
import asyncio

import pytest

from timer import CountdownTimer, format_remaining, urgency


class Recorder:
    def __init__(self):
        self.ticks = []
        self.expired = 0

    def on_tick(self, remaining):
        self.ticks.append(remaining)

    def on_expire(self):
        self.expired += 1


def test_ticks_down_and_expires_once():
    rec = Recorder()
    timer = CountdownTimer(3, rec.on_tick, rec.on_expire)
    for _ in range(5):
        timer.tick()
    assert rec.ticks == [2, 1, 0]
    assert rec.expired == 1
    assert timer.expired
    assert timer.remaining == 0


def test_stop_suppresses_callbacks():
    rec = Recorder()
    timer = CountdownTimer(3, rec.on_tick, rec.on_expire)
    timer.tick()
    timer.stop()
    timer.tick()
    timer.tick()
    assert rec.ticks == [2]
    assert rec.expired == 0


@pytest.mark.asyncio
async def test_runs_on_the_loop_until_expiry():
    rec = Recorder()
    done = asyncio.Event()

    def on_expire():
        rec.on_expire()
        done.set()

    async def fast_sleep(_interval):
        await asyncio.sleep(0)

    timer = CountdownTimer(60, rec.on_tick, on_expire, sleep=fast_sleep)
    timer.start()
    await asyncio.wait_for(done.wait(), timeout=5)
    await asyncio.sleep(0)
    assert rec.ticks == list(range(59, -1, -1))
    assert rec.expired == 1
    assert not timer.running


@pytest.mark.asyncio
async def test_stop_cancels_the_task():
    rec = Recorder()
    timer = CountdownTimer(10, rec.on_tick, rec.on_expire, interval=60)
    timer.start()
    assert timer.running
    timer.stop()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert not timer.running
    assert rec.ticks == []


@pytest.mark.asyncio
async def test_aclose_waits_for_the_task():
    rec = Recorder()
    timer = CountdownTimer(10, rec.on_tick, rec.on_expire, interval=60)
    timer.start()
    await timer.aclose()
    assert not timer.running
    assert timer._task.cancelled()
    await timer.aclose()


@pytest.mark.asyncio
async def test_aclose_before_start():
    timer = CountdownTimer(10, lambda r: None, lambda: None, interval=60)
    await timer.aclose()
    assert not timer.running


@pytest.mark.asyncio
async def test_cannot_start_twice():
    timer = CountdownTimer(10, lambda r: None, lambda: None, interval=60)
    timer.start()
    with pytest.raises(RuntimeError):
        timer.start()
    timer.stop()


@pytest.mark.asyncio
async def test_zero_seconds_expires_immediately():
    rec = Recorder()
    timer = CountdownTimer(0, rec.on_tick, rec.on_expire, interval=60)
    timer.start()
    await asyncio.sleep(0)
    assert rec.expired == 1
    assert rec.ticks == []


def test_format_remaining():
    assert format_remaining(0) == "0:00"
    assert format_remaining(65) == "1:05"
    assert format_remaining(3599) == "59:59"
    assert format_remaining(3725) == "1:02:05"


def test_urgency_bands():
    assert urgency(1200) == "normal"
    assert urgency(600) == "warning"
    assert urgency(301) == "warning"
    assert urgency(300) == "critical"
