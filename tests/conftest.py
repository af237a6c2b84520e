import asyncio
import functools
from datetime import datetime, timedelta, timezone

import pytest

from answer_queue import AnswerWriteQueue
from controller import AttemptController
from errors import PersistenceError, ProgressTrackerError
from schemas import Question, Quiz
from stores import InMemoryAttemptStore, InMemoryProgressTracker
from timer import CountdownTimer


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class RecordingAttemptStore(InMemoryAttemptStore):
    """In-memory store that counts writes and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.updates = []
        self.finalize_calls = 0
        self.fail_finalize = 0
        self.fail_updates = 0

    async def update_answers(self, attempt_id, answers):
        self.updates.append(dict(answers))
        if self.fail_updates:
            self.fail_updates -= 1
            raise PersistenceError("backend down")
        await super().update_answers(attempt_id, answers)

    async def finalize(self, attempt_id, finalization):
        self.finalize_calls += 1
        if self.fail_finalize:
            self.fail_finalize -= 1
            raise PersistenceError("backend down")
        return await super().finalize(attempt_id, finalization)


class RecordingTracker(InMemoryProgressTracker):
    def __init__(self, fail=False):
        super().__init__()
        self.calls = []
        self.fail = fail

    async def mark_course_complete(self, user_id, course_id):
        self.calls.append((user_id, course_id))
        if self.fail:
            raise ProgressTrackerError("progress service unavailable")
        await super().mark_course_complete(user_id, course_id)


async def _never(_interval):
    await asyncio.Event().wait()


# Timer whose schedule never fires on its own; tests call tick() themselves.
manual_timer = functools.partial(CountdownTimer, sleep=_never)


def make_question(qid, type="multiple_choice", correct="A", points=1, order=0, options=None, explanation=None):
    if options is None:
        options = ["A", "B", "C"] if type == "multiple_choice" else []
    return Question(
        id=qid,
        quiz_id="quiz-1",
        text=f"Question {qid}",
        type=type,
        options=options,
        correct_answer=correct,
        points=points,
        order_index=order,
        explanation=explanation,
    )


def make_quiz(**overrides):
    fields = dict(
        id="quiz-1",
        course_id="course-1",
        title="Safety basics",
        passing_score=50,
        max_attempts=3,
        is_published=True,
    )
    fields.update(overrides)
    return Quiz(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RecordingAttemptStore()


@pytest.fixture
def tracker():
    return RecordingTracker()


@pytest.fixture
def two_questions():
    return [
        make_question("q1", correct="A", order=0, explanation="A is right"),
        make_question("q2", correct="B", order=1),
    ]


@pytest.fixture
def make_controller(store, tracker, clock):
    def factory(retries=0, progress=None):
        writes = AnswerWriteQueue(store, retries=retries, backoff=0)
        return AttemptController(
            store,
            progress if progress is not None else tracker,
            writes=writes,
            clock=clock,
            timer_factory=manual_timer,
        )
    return factory
