"""Ordered answer persistence.

Each attempt id gets its own asyncio.Queue and a single drain task, so the
answers maps handed to the store are written strictly in the order they were
enqueued. A failed write is retried with backoff unless a newer map for the
same attempt is already waiting; that map carries every answer anyway.
"""
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, Mapping

from errors import PersistenceError

logger = logging.getLogger(__name__)


class AnswerWriteQueue:
    def __init__(
        self,
        store,
        *,
        retries: int = 3,
        backoff: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._unsaved: Dict[str, bool] = {}

    def enqueue(self, attempt_id: str, answers: Mapping[str, str]) -> None:
        """Queue a copy of `answers` for writing; returns immediately."""
        queue = self._queues.get(attempt_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[attempt_id] = queue
            self._workers[attempt_id] = asyncio.get_running_loop().create_task(
                self._drain(attempt_id, queue)
            )
        queue.put_nowait(dict(answers))

    def unsaved(self, attempt_id: str) -> bool:
        """True while the latest write for the attempt has failed for good."""
        return self._unsaved.get(attempt_id, False)

    def pending(self, attempt_id: str) -> int:
        queue = self._queues.get(attempt_id)
        return queue.qsize() if queue is not None else 0

    async def _drain(self, attempt_id: str, queue: asyncio.Queue) -> None:
        while True:
            answers = await queue.get()
            try:
                await self._write(attempt_id, answers, queue)
            except Exception:
                self._unsaved[attempt_id] = True
                logger.exception("unexpected error saving answers for %s", attempt_id)
            finally:
                queue.task_done()

    async def _write(self, attempt_id: str, answers: Dict[str, str], queue: asyncio.Queue) -> None:
        for n in range(self.retries + 1):
            try:
                await self._store.update_answers(attempt_id, answers)
            except PersistenceError as exc:
                if not queue.empty():
                    logger.info("answer save for %s failed, newer answers queued: %s", attempt_id, exc)
                    return
                if n == self.retries:
                    self._unsaved[attempt_id] = True
                    logger.warning("answers for %s not saved after %d tries: %s", attempt_id, n + 1, exc)
                    return
                await self._sleep(self.backoff * (2 ** n))
            else:
                self._unsaved[attempt_id] = False
                return

    async def flush(self, attempt_id: str) -> None:
        """Wait until every queued write for the attempt has been handled."""
        queue = self._queues.get(attempt_id)
        if queue is not None:
            await queue.join()

    async def settle(self, attempt_id: str) -> None:
        """Drop writes not yet started and wait for the one in flight."""
        queue = self._queues.get(attempt_id)
        if queue is None:
            return
        dropped = 0
        while True:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            queue.task_done()
            dropped += 1
        if dropped:
            logger.debug("dropped %d superseded answer writes for %s", dropped, attempt_id)
        await queue.join()

    async def close(self, attempt_id: str) -> None:
        await self.settle(attempt_id)
        worker = self._workers.pop(attempt_id, None)
        self._queues.pop(attempt_id, None)
        self._unsaved.pop(attempt_id, None)
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
