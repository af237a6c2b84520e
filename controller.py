"""Quiz-taking state machine.

An AttemptController drives one learner through one attempt:

    UNINITIALIZED -> IN_PROGRESS -> SUBMITTING -> FINALIZED

It owns the in-memory answers, the countdown timer and the ordering of answer
writes. Scoring happens once, on submit; the finalizing write is issued at most
once however many times submit is called (manually or by the timer).
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set

import scoring
from answer_queue import AnswerWriteQueue
from database import utcnow
from errors import AttemptLimitExceeded, InvalidState, NotPublished, PersistenceError, UnknownQuestion
from logging_setup import set_attempt_id
from schemas import Attempt, AttemptSnapshot, AttemptState, Finalization, Question, Quiz, order_questions
from timer import CountdownTimer

logger = logging.getLogger(__name__)


def latest_completed(attempts: Sequence[Attempt]) -> Optional[Attempt]:
    """The newest attempt if it is finished, else None.

    A learner whose most recent attempt is complete goes straight to results.
    """
    if not attempts:
        return None
    newest = max(attempts, key=lambda a: a.started_at)
    return newest if newest.is_completed else None


class AttemptController:
    def __init__(
        self,
        store,
        progress,
        *,
        writes: Optional[AnswerWriteQueue] = None,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: Callable[..., CountdownTimer] = CountdownTimer,
        on_finalized: Optional[Callable[["AttemptController"], None]] = None,
    ):
        self.store = store
        self.progress = progress
        self.writes = writes if writes is not None else AnswerWriteQueue(store)
        self.clock = clock
        self.timer_factory = timer_factory
        self.on_finalized = on_finalized

        self.state = AttemptState.UNINITIALIZED
        self.quiz: Optional[Quiz] = None
        self.questions: List[Question] = []
        self.user_id: Optional[str] = None
        self.attempt_id: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.answers: Dict[str, str] = {}
        self.revealed: Set[str] = set()
        self.current_index = 0
        self.timer: Optional[CountdownTimer] = None
        self.remaining_seconds: Optional[int] = None
        self.finalized: Optional[Attempt] = None

        self._question_ids: Set[str] = set()
        self._pending: Optional[Finalization] = None
        self._submit_lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()

    # -- lifecycle -------------------------------------------------------

    async def start(self, quiz: Quiz, questions: Sequence[Question], user_id: str) -> Attempt:
        """Open a new attempt for `user_id` and start the clock if the quiz is timed."""
        if self.state is not AttemptState.UNINITIALIZED:
            raise InvalidState(f"attempt already {self.state.value}")
        assert questions is not None, "questions are required"
        if not quiz.is_published:
            raise NotPublished(f"quiz {quiz.id} is not published")

        prior = await self.store.prior_attempts(user_id, quiz.id)
        completed = sum(1 for a in prior if a.is_completed)
        if completed >= quiz.max_attempts:
            raise AttemptLimitExceeded(
                f"user {user_id} has used {completed} of {quiz.max_attempts} attempts on quiz {quiz.id}"
            )

        ordered = order_questions(questions)
        started_at = self.clock()
        attempt_id = await self.store.create(user_id, quiz.id, started_at)

        self.quiz = quiz
        self.questions = ordered
        self._question_ids = {q.id for q in self.questions}
        self.user_id = user_id
        self.attempt_id = attempt_id
        self.started_at = started_at
        self.state = AttemptState.IN_PROGRESS
        set_attempt_id(attempt_id)
        logger.info("attempt %s started: user=%s quiz=%s", attempt_id, user_id, quiz.id)

        if quiz.time_limit_minutes:
            self.remaining_seconds = quiz.time_limit_minutes * 60
            self.timer = self.timer_factory(self.remaining_seconds, self._on_tick, self._on_expire)
            self.timer.start()

        return Attempt(id=attempt_id, quiz_id=quiz.id, user_id=user_id, started_at=started_at)

    def record_answer(self, question_id: str, value: str) -> None:
        """Store an answer and queue it for saving; does not wait for the save."""
        self._require(AttemptState.IN_PROGRESS)
        if question_id not in self._question_ids:
            raise UnknownQuestion(f"question {question_id} is not part of this quiz")
        self.answers[question_id] = value
        self.revealed.add(question_id)
        self.writes.enqueue(self.attempt_id, self.answers)

    # -- navigation ------------------------------------------------------

    def go_to(self, index: int) -> int:
        if self.questions:
            self.current_index = min(max(index, 0), len(self.questions) - 1)
        return self.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    # -- submission ------------------------------------------------------

    async def submit(self) -> Attempt:
        """Score and finalize the attempt.

        Safe to call repeatedly: once finalized it returns the stored result.
        A failed finalize leaves the controller SUBMITTING; calling again
        retries the same write.
        """
        async with self._submit_lock:
            if self.state is AttemptState.FINALIZED:
                return self.finalized
            if self.state not in (AttemptState.IN_PROGRESS, AttemptState.SUBMITTING):
                raise InvalidState(f"cannot submit while {self.state.value}")

            if self.state is AttemptState.IN_PROGRESS:
                self.state = AttemptState.SUBMITTING
                await self._stop_timer()
                await self.writes.settle(self.attempt_id)
                now = self.clock()
                self._pending = Finalization(
                    answers=dict(self.answers),
                    score=scoring.score(self.questions, self.answers),
                    completed_at=now,
                    time_taken_seconds=max(0, round((now - self.started_at).total_seconds())),
                )

            try:
                attempt = await self.store.finalize(self.attempt_id, self._pending)
            except PersistenceError:
                logger.exception("finalize failed for attempt %s", self.attempt_id)
                raise

            self.finalized = attempt
            self.state = AttemptState.FINALIZED
            is_passed = scoring.passed(attempt.score, self.quiz.passing_score)
            logger.info(
                "attempt %s finalized: score=%s passed=%s", self.attempt_id, attempt.score, is_passed
            )
            if is_passed and self.quiz.course_id:
                self._spawn(self._notify_passed())
            if self.on_finalized is not None:
                self.on_finalized(self)
            return attempt

    async def _notify_passed(self) -> None:
        try:
            await self.progress.mark_course_complete(self.user_id, self.quiz.course_id)
        except Exception:
            logger.exception(
                "progress update failed for user %s course %s", self.user_id, self.quiz.course_id
            )

    async def _auto_submit(self) -> None:
        try:
            await self.submit()
        except PersistenceError:
            logger.warning("auto-submit of %s failed; waiting for a manual retry", self.attempt_id)

    # -- timer callbacks -------------------------------------------------

    def _on_tick(self, remaining: int) -> None:
        self.remaining_seconds = remaining

    def _on_expire(self) -> None:
        self.remaining_seconds = 0
        if self.state is AttemptState.IN_PROGRESS:
            logger.info("time is up for attempt %s", self.attempt_id)
            self._spawn(self._auto_submit())

    async def _stop_timer(self) -> None:
        if self.timer is not None:
            await self.timer.aclose()

    # -- helpers ---------------------------------------------------------

    def _require(self, state: AttemptState) -> None:
        if self.state is not state:
            raise InvalidState(f"expected {state.value}, attempt is {self.state.value}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def passed(self) -> Optional[bool]:
        if self.finalized is None:
            return None
        return scoring.passed(self.finalized.score, self.quiz.passing_score)

    def snapshot(self) -> AttemptSnapshot:
        return AttemptSnapshot(
            state=self.state,
            attempt_id=self.attempt_id,
            current_question_index=self.current_index,
            total_questions=len(self.questions),
            answers=dict(self.answers),
            revealed_explanations=sorted(self.revealed),
            remaining_seconds=self.remaining_seconds,
            unsaved_changes=self.writes.unsaved(self.attempt_id) if self.attempt_id else False,
            finalized_attempt=self.finalized,
        )

    async def wait_background(self) -> None:
        """Wait for auto-submit and progress notifications already scheduled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Tear down: stop the clock, settle pending writes, let background work finish."""
        await self._stop_timer()
        if self.attempt_id is not None:
            await self.writes.close(self.attempt_id)
        await self.wait_background()
