"""
MongoDB implementations of the store interfaces in stores.py.

Collections: quiz, question, quizattempt, courseenrollment, certificate.
Driver failures surface as PersistenceError (ProgressTrackerError for the
progress tracker).
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ReturnDocument

from database import backend_errors, create_document, get_documents, parse_object_id, utcnow
from errors import AttemptNotFound, ProgressTrackerError, QuizNotFound
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
from stores import summarize

logger = logging.getLogger(__name__)

ATTEMPTS = "quizattempt"
QUIZZES = "quiz"
QUESTIONS = "question"
ENROLLMENTS = "courseenrollment"
CERTIFICATES = "certificate"


def _with_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _attempt(doc: Dict[str, Any]) -> Attempt:
    return Attempt.model_validate(_with_id(doc))


class MongoAttemptStore:
    def __init__(self, database):
        self.db = database

    def _oid(self, attempt_id: str):
        oid = parse_object_id(attempt_id)
        if oid is None:
            raise AttemptNotFound(attempt_id)
        return oid

    async def create(self, user_id: str, quiz_id: str, started_at: datetime) -> str:
        doc = {
            "user_id": user_id,
            "quiz_id": quiz_id,
            "answers": {},
            "started_at": started_at,
            "completed_at": None,
            "score": None,
            "time_taken_seconds": None,
        }
        return await create_document(ATTEMPTS, doc, database=self.db)

    async def update_answers(self, attempt_id: str, answers: Mapping[str, str]) -> None:
        with backend_errors("save answers"):
            result = await self.db[ATTEMPTS].update_one(
                {"_id": self._oid(attempt_id), "completed_at": None},
                {"$set": {"answers": dict(answers), "updated_at": utcnow()}},
            )
        if result.matched_count == 0:
            logger.debug("answers for %s not applied: attempt missing or finalized", attempt_id)

    async def finalize(self, attempt_id: str, finalization: Finalization) -> Attempt:
        oid = self._oid(attempt_id)
        fields = finalization.model_dump()
        fields["updated_at"] = utcnow()
        with backend_errors("finalize attempt"):
            doc = await self.db[ATTEMPTS].find_one_and_update(
                {"_id": oid, "completed_at": None},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                # Already finalized by an earlier write; hand back what is stored.
                doc = await self.db[ATTEMPTS].find_one({"_id": oid})
        if doc is None:
            raise AttemptNotFound(attempt_id)
        return _attempt(doc)

    async def prior_attempts(self, user_id: str, quiz_id: str) -> List[Attempt]:
        docs = await get_documents(
            ATTEMPTS, {"user_id": user_id, "quiz_id": quiz_id}, sort=[("started_at", -1)], database=self.db
        )
        return [_attempt(d) for d in docs]

    async def get(self, attempt_id: str) -> Optional[Attempt]:
        oid = parse_object_id(attempt_id)
        if oid is None:
            return None
        with backend_errors("load attempt"):
            doc = await self.db[ATTEMPTS].find_one({"_id": oid})
        return _attempt(doc) if doc else None


class MongoProgressTracker:
    def __init__(self, database):
        self.db = database

    async def enroll(self, user_id: str, course_id: str) -> CourseEnrollment:
        with backend_errors("enroll", ProgressTrackerError):
            doc = await self.db[ENROLLMENTS].find_one_and_update(
                {"user_id": user_id, "course_id": course_id},
                {"$setOnInsert": {
                    "enrolled_at": utcnow(),
                    "completed_at": None,
                    "progress_percentage": 0,
                }},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        return CourseEnrollment.model_validate(doc)

    async def mark_course_complete(self, user_id: str, course_id: str) -> None:
        with backend_errors("mark course complete", ProgressTrackerError):
            result = await self.db[ENROLLMENTS].update_one(
                {"user_id": user_id, "course_id": course_id},
                {"$set": {"progress_percentage": 100, "completed_at": utcnow()}},
            )
        if result.matched_count == 0:
            logger.info("user %s not enrolled in course %s; progress unchanged", user_id, course_id)


class MongoQuizCatalog:
    def __init__(self, database):
        self.db = database

    async def create_quiz(self, payload: QuizCreate) -> Quiz:
        quiz_doc = payload.model_dump(exclude={"questions"})
        quiz_id = await create_document(QUIZZES, quiz_doc, database=self.db)
        for q in payload.questions:
            await create_document(QUESTIONS, {"quiz_id": quiz_id, **q.model_dump()}, database=self.db)
        return Quiz(id=quiz_id, **quiz_doc)

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        oid = parse_object_id(quiz_id)
        if oid is None:
            return None
        with backend_errors("load quiz"):
            doc = await self.db[QUIZZES].find_one({"_id": oid})
        return Quiz.model_validate(_with_id(doc)) if doc else None

    async def list_quizzes(self, published_only: bool = True) -> List[QuizSummary]:
        query = {"is_published": True} if published_only else {}
        docs = await get_documents(QUIZZES, query, database=self.db)
        result = []
        for doc in docs:
            quiz = Quiz.model_validate(_with_id(doc))
            with backend_errors("count questions"):
                count = await self.db[QUESTIONS].count_documents({"quiz_id": quiz.id})
            result.append(summarize(quiz, count))
        return result

    async def quizzes_for_course(self, course_id: str) -> List[Quiz]:
        docs = await get_documents(QUIZZES, {"course_id": course_id}, database=self.db)
        return [Quiz.model_validate(_with_id(d)) for d in docs]

    async def get_questions(self, quiz_id: str) -> List[Question]:
        docs = await get_documents(QUESTIONS, {"quiz_id": quiz_id}, sort=[("order_index", 1)], database=self.db)
        return [Question.model_validate(_with_id(d)) for d in docs]

    async def set_published(self, quiz_id: str, is_published: bool) -> Quiz:
        oid = parse_object_id(quiz_id)
        if oid is None:
            raise QuizNotFound(quiz_id)
        with backend_errors("publish quiz"):
            doc = await self.db[QUIZZES].find_one_and_update(
                {"_id": oid},
                {"$set": {"is_published": is_published, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise QuizNotFound(quiz_id)
        return Quiz.model_validate(_with_id(doc))


class MongoCertificateStore:
    def __init__(self, database):
        self.db = database

    async def find(self, user_id: str, course_id: str) -> Optional[Certificate]:
        with backend_errors("load certificate"):
            doc = await self.db[CERTIFICATES].find_one({"user_id": user_id, "course_id": course_id})
        return Certificate.model_validate(_with_id(doc)) if doc else None

    async def find_by_code(self, certificate_id: str) -> Optional[Certificate]:
        with backend_errors("verify certificate"):
            doc = await self.db[CERTIFICATES].find_one({"certificate_id": certificate_id})
        return Certificate.model_validate(_with_id(doc)) if doc else None

    async def insert(self, user_id: str, course_id: str, certificate_id: str, score: int) -> Certificate:
        doc = {
            "user_id": user_id,
            "course_id": course_id,
            "certificate_id": certificate_id,
            "score": score,
            "issued_at": utcnow(),
        }
        new_id = await create_document(CERTIFICATES, doc, database=self.db)
        return Certificate(id=new_id, **doc)

    async def list_for_user(self, user_id: str) -> List[Certificate]:
        docs = await get_documents(CERTIFICATES, {"user_id": user_id}, sort=[("issued_at", -1)], database=self.db)
        return [Certificate.model_validate(_with_id(d)) for d in docs]
