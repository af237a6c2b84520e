"""Per-attempt countdown clock.

One CountdownTimer owns one asyncio task for the whole attempt. It is started
once, ticks every `interval` seconds and is cancelled on submit or teardown.
"""
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    def __init__(
        self,
        total_seconds: int,
        on_tick: Callable[[int], None],
        on_expire: Callable[[], None],
        *,
        interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.total_seconds = int(total_seconds)
        self.interval = interval
        self._remaining = self.total_seconds
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._expired = False

    @property
    def remaining(self) -> int:
        return max(0, self._remaining)

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the periodic task on the running loop."""
        if self._task is not None:
            raise RuntimeError("timer already started")
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        if self._remaining <= 0:
            self._expire()
            return
        while not self._stopped and not self._expired:
            await self._sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        """Advance the clock by one second."""
        if self._stopped or self._expired:
            return
        self._remaining -= 1
        self._on_tick(self.remaining)
        if self._remaining <= 0:
            self._expire()

    def _expire(self) -> None:
        if self._expired:
            return
        self._expired = True
        logger.info("countdown expired after %ss", self.total_seconds)
        self._on_expire()

    def stop(self) -> None:
        """Cancel the schedule; no callback fires after this returns."""
        self._stopped = True
        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    async def aclose(self) -> None:
        """Stop and wait for the task to finish unwinding."""
        self.stop()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task


def format_remaining(seconds: int) -> str:
    """'M:SS', or 'H:MM:SS' from one hour up."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def urgency(seconds: int) -> str:
    if seconds <= 300:
        return "critical"
    if seconds <= 600:
        return "warning"
    return "normal"
