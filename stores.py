"""
Persistence interfaces used by the quiz core, plus in-memory implementations.

The Mongo-backed versions live in mongo_stores.py. The in-memory ones back
local runs without DATABASE_URL and the test-suite.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from database import utcnow
from errors import AttemptNotFound, QuizNotFound
from schemas import (
    Attempt,
    Certificate,
    CourseEnrollment,
    Finalization,
    Question,
    Quiz,
    QuizCreate,
    QuizSummary,
)


class AttemptStore(Protocol):
    async def create(self, user_id: str, quiz_id: str, started_at: datetime) -> str: ...

    async def update_answers(self, attempt_id: str, answers: Mapping[str, str]) -> None: ...

    async def finalize(self, attempt_id: str, finalization: Finalization) -> Attempt: ...

    async def prior_attempts(self, user_id: str, quiz_id: str) -> List[Attempt]: ...

    async def get(self, attempt_id: str) -> Optional[Attempt]: ...


class ProgressTracker(Protocol):
    async def enroll(self, user_id: str, course_id: str) -> CourseEnrollment: ...

    async def mark_course_complete(self, user_id: str, course_id: str) -> None: ...


class QuizCatalog(Protocol):
    async def create_quiz(self, payload: QuizCreate) -> Quiz: ...

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]: ...

    async def list_quizzes(self, published_only: bool = True) -> List[QuizSummary]: ...

    async def quizzes_for_course(self, course_id: str) -> List[Quiz]: ...

    async def get_questions(self, quiz_id: str) -> List[Question]: ...

    async def set_published(self, quiz_id: str, is_published: bool) -> Quiz: ...


class CertificateStore(Protocol):
    async def find(self, user_id: str, course_id: str) -> Optional[Certificate]: ...

    async def find_by_code(self, certificate_id: str) -> Optional[Certificate]: ...

    async def insert(self, user_id: str, course_id: str, certificate_id: str, score: int) -> Certificate: ...

    async def list_for_user(self, user_id: str) -> List[Certificate]: ...


def _new_id() -> str:
    return uuid.uuid4().hex


def summarize(quiz: Quiz, questions_count: int) -> QuizSummary:
    return QuizSummary(questions_count=questions_count, **quiz.model_dump())


class InMemoryAttemptStore:
    def __init__(self):
        self._attempts: Dict[str, Attempt] = {}

    async def create(self, user_id: str, quiz_id: str, started_at: datetime) -> str:
        attempt_id = _new_id()
        self._attempts[attempt_id] = Attempt(
            id=attempt_id, quiz_id=quiz_id, user_id=user_id, started_at=started_at
        )
        return attempt_id

    def _require(self, attempt_id: str) -> Attempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise AttemptNotFound(attempt_id)
        return attempt

    async def update_answers(self, attempt_id: str, answers: Mapping[str, str]) -> None:
        attempt = self._require(attempt_id)
        if attempt.is_completed:
            return
        self._attempts[attempt_id] = attempt.model_copy(update={"answers": dict(answers)})

    async def finalize(self, attempt_id: str, finalization: Finalization) -> Attempt:
        attempt = self._require(attempt_id)
        if attempt.is_completed:
            return attempt
        done = attempt.model_copy(update=finalization.model_dump())
        self._attempts[attempt_id] = done
        return done

    async def prior_attempts(self, user_id: str, quiz_id: str) -> List[Attempt]:
        found = [a for a in self._attempts.values() if a.user_id == user_id and a.quiz_id == quiz_id]
        return sorted(found, key=lambda a: a.started_at, reverse=True)

    async def get(self, attempt_id: str) -> Optional[Attempt]:
        return self._attempts.get(attempt_id)


class InMemoryProgressTracker:
    def __init__(self):
        self.enrollments: Dict[Tuple[str, str], CourseEnrollment] = {}

    async def enroll(self, user_id: str, course_id: str) -> CourseEnrollment:
        key = (user_id, course_id)
        if key not in self.enrollments:
            self.enrollments[key] = CourseEnrollment(user_id=user_id, course_id=course_id, enrolled_at=utcnow())
        return self.enrollments[key]

    async def mark_course_complete(self, user_id: str, course_id: str) -> None:
        enrollment = self.enrollments.get((user_id, course_id))
        if enrollment is None:
            return
        self.enrollments[(user_id, course_id)] = enrollment.model_copy(
            update={"progress_percentage": 100, "completed_at": utcnow()}
        )


class InMemoryQuizCatalog:
    def __init__(self):
        self._quizzes: Dict[str, Quiz] = {}
        self._questions: Dict[str, List[Question]] = {}

    async def create_quiz(self, payload: QuizCreate) -> Quiz:
        quiz_id = _new_id()
        quiz = Quiz(id=quiz_id, **payload.model_dump(exclude={"questions"}))
        self._quizzes[quiz_id] = quiz
        self._questions[quiz_id] = [
            Question(id=_new_id(), quiz_id=quiz_id, **q.model_dump()) for q in payload.questions
        ]
        return quiz

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        return self._quizzes.get(quiz_id)

    async def list_quizzes(self, published_only: bool = True) -> List[QuizSummary]:
        return [
            summarize(q, len(self._questions.get(q.id, [])))
            for q in self._quizzes.values()
            if q.is_published or not published_only
        ]

    async def quizzes_for_course(self, course_id: str) -> List[Quiz]:
        return [q for q in self._quizzes.values() if q.course_id == course_id]

    async def get_questions(self, quiz_id: str) -> List[Question]:
        return sorted(self._questions.get(quiz_id, []), key=lambda q: q.order_index)

    async def set_published(self, quiz_id: str, is_published: bool) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise QuizNotFound(quiz_id)
        quiz = quiz.model_copy(update={"is_published": is_published})
        self._quizzes[quiz_id] = quiz
        return quiz


class InMemoryCertificateStore:
    def __init__(self):
        self._certificates: Dict[str, Certificate] = {}

    async def find(self, user_id: str, course_id: str) -> Optional[Certificate]:
        for cert in self._certificates.values():
            if cert.user_id == user_id and cert.course_id == course_id:
                return cert
        return None

    async def find_by_code(self, certificate_id: str) -> Optional[Certificate]:
        for cert in self._certificates.values():
            if cert.certificate_id == certificate_id:
                return cert
        return None

    async def insert(self, user_id: str, course_id: str, certificate_id: str, score: int) -> Certificate:
        cert = Certificate(
            id=_new_id(),
            certificate_id=certificate_id,
            user_id=user_id,
            course_id=course_id,
            score=score,
            issued_at=utcnow(),
        )
        self._certificates[cert.id] = cert
        return cert

    async def list_for_user(self, user_id: str) -> List[Certificate]:
        found = [c for c in self._certificates.values() if c.user_id == user_id]
        return sorted(found, key=lambda c: c.issued_at, reverse=True)
