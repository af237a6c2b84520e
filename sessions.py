"""Live attempt controllers, keyed by attempt id.

The HTTP layer is stateless per request; the controller of an open attempt
(its answers, timer and write queue) lives here until the attempt is
finalized, the learner closes the quiz view or the app shuts down.
"""
import asyncio
import functools
import logging
from typing import Dict, List, Sequence, Set

from answer_queue import AnswerWriteQueue
from controller import AttemptController
from errors import AttemptNotFound
from schemas import Question, Quiz
from settings import Settings
from timer import CountdownTimer

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, store, progress, settings: Settings):
        self.store = store
        self.progress = progress
        self.settings = settings
        self.writes = AnswerWriteQueue(
            store,
            retries=settings.answer_write_retries,
            backoff=settings.answer_write_backoff_seconds,
        )
        self._sessions: Dict[str, AttemptController] = {}
        self._releasing: Set[asyncio.Task] = set()

    def new_controller(self) -> AttemptController:
        return AttemptController(
            self.store,
            self.progress,
            writes=self.writes,
            timer_factory=functools.partial(CountdownTimer, interval=self.settings.timer_interval_seconds),
            on_finalized=self._finalized,
        )

    async def open(self, quiz: Quiz, questions: Sequence[Question], user_id: str) -> AttemptController:
        controller = self.new_controller()
        await controller.start(quiz, questions, user_id)
        self._sessions[controller.attempt_id] = controller
        return controller

    def get(self, attempt_id: str, user_id: str) -> AttemptController:
        """Controller for `attempt_id`, only if it belongs to `user_id`."""
        controller = self._sessions.get(attempt_id)
        if controller is None or controller.user_id != user_id:
            raise AttemptNotFound(f"no open attempt {attempt_id} for user {user_id}")
        return controller

    def _finalized(self, controller: AttemptController) -> None:
        # Called from inside submit, possibly on the auto-submit task; the
        # teardown waits for that task, so it runs on its own.
        if self._sessions.pop(controller.attempt_id, None) is None:
            return
        task = asyncio.get_running_loop().create_task(self._release(controller))
        self._releasing.add(task)
        task.add_done_callback(self._releasing.discard)

    async def _release(self, controller: AttemptController) -> None:
        await controller.aclose()
        logger.info("attempt %s finalized and released", controller.attempt_id)

    async def wait_released(self) -> None:
        """Wait for finalized controllers to finish tearing down."""
        while self._releasing:
            await asyncio.gather(*list(self._releasing), return_exceptions=True)

    async def close(self, attempt_id: str, user_id: str) -> AttemptController:
        controller = self.get(attempt_id, user_id)
        self._sessions.pop(attempt_id, None)
        await controller.aclose()
        logger.info("attempt %s closed in state %s", attempt_id, controller.state.value)
        return controller

    async def close_all(self) -> None:
        sessions: List[AttemptController] = list(self._sessions.values())
        self._sessions.clear()
        for controller in sessions:
            await controller.aclose()
        await self.wait_released()

    def __len__(self) -> int:
        return len(self._sessions)
