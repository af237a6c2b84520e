import os
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from certificates import CertificateService
from controller import AttemptController, latest_completed
from database import db
from errors import (
    AttemptLimitExceeded,
    AttemptNotFound,
    CertificateNotEligible,
    InvalidState,
    NotPublished,
    PersistenceError,
    ProgressTrackerError,
    QuizNotFound,
    QuizServiceError,
    UnknownQuestion,
)
from logging_setup import configure_logging
from mongo_stores import MongoAttemptStore, MongoCertificateStore, MongoProgressTracker, MongoQuizCatalog
from schemas import Certificate, CourseEnrollment, QuestionCreate, QuestionPublic, QuizCreate, QuizSummary
from scoring import build_results
from sessions import SessionRegistry
from settings import Settings, get_settings
from stores import InMemoryAttemptStore, InMemoryCertificateStore, InMemoryProgressTracker, InMemoryQuizCatalog
from timer import format_remaining, urgency


class Services:
    """Stores and live sessions shared by every request."""

    def __init__(self, attempts, progress, catalog, certificates, settings: Settings):
        self.attempts = attempts
        self.progress = progress
        self.catalog = catalog
        self.sessions = SessionRegistry(attempts, progress, settings)
        self.certificates = CertificateService(certificates, catalog, attempts)


def build_services(settings: Settings) -> Services:
    if db is not None:
        return Services(
            MongoAttemptStore(db), MongoProgressTracker(db), MongoQuizCatalog(db), MongoCertificateStore(db), settings
        )
    return Services(
        InMemoryAttemptStore(), InMemoryProgressTracker(), InMemoryQuizCatalog(), InMemoryCertificateStore(), settings
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    yield
    if _services is not None:
        await _services.sessions.close_all()


app = FastAPI(title="Training Quiz API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotPublished: 409,
    AttemptLimitExceeded: 409,
    InvalidState: 409,
    QuizNotFound: 404,
    AttemptNotFound: 404,
    UnknownQuestion: 404,
    CertificateNotEligible: 422,
    PersistenceError: 503,
    ProgressTrackerError: 503,
}


@app.exception_handler(QuizServiceError)
async def quiz_service_error(request: Request, exc: QuizServiceError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


# Utilities
class StartAttempt(BaseModel):
    user_id: str = Field(..., min_length=1)
    retake: bool = Field(False, description="Start a new attempt even if the last one is completed")


class AnswerPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    value: str


class NavigatePayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    action: Literal["next", "previous", "goto"]
    index: Optional[int] = None


class UserPayload(BaseModel):
    user_id: str = Field(..., min_length=1)


class PublishPayload(BaseModel):
    is_published: bool = True


class EnrollPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)


async def load_quiz(services: Services, quiz_id: str, include_unpublished: bool = False):
    quiz = await services.catalog.get_quiz(quiz_id)
    if quiz is None or not (quiz.is_published or include_unpublished):
        raise QuizNotFound("Quiz not found or not published")
    return quiz


def attempt_view(controller: AttemptController) -> dict:
    snapshot = controller.snapshot()
    question = controller.current_question
    view = {
        "snapshot": snapshot,
        "question": QuestionPublic.from_question(question) if question else None,
        "explanation": question.explanation if question and question.id in controller.revealed else None,
        "timer": None,
    }
    if snapshot.remaining_seconds is not None:
        view["timer"] = {
            "remaining_seconds": snapshot.remaining_seconds,
            "display": format_remaining(snapshot.remaining_seconds),
            "urgency": urgency(snapshot.remaining_seconds),
        }
    return view


@app.get("/")
def root():
    return {"message": "Training Quiz API is running"}


@app.get("/test")
async def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = getattr(db, 'name', None) or "Unknown"
            response["connection_status"] = "Connected"
            try:
                collections = await db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Not configured, using in-memory stores"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    return response


# ------------------ Quizzes ------------------
@app.post("/api/quizzes", response_model=dict)
async def create_quiz(payload: QuizCreate, services: Services = Depends(get_services)):
    quiz = await services.catalog.create_quiz(payload)
    return {"id": quiz.id}


@app.get("/api/quizzes", response_model=List[QuizSummary])
async def list_quizzes(include_unpublished: bool = False, services: Services = Depends(get_services)):
    return await services.catalog.list_quizzes(published_only=not include_unpublished)


@app.get("/api/quizzes/{quiz_id}", response_model=dict)
async def get_quiz(quiz_id: str, include_unpublished: bool = False, services: Services = Depends(get_services)):
    quiz = await load_quiz(services, quiz_id, include_unpublished)
    questions = await services.catalog.get_questions(quiz_id)
    return {"quiz": quiz, "questions": [QuestionPublic.from_question(q) for q in questions]}


@app.post("/api/quizzes/{quiz_id}/publish", response_model=dict)
async def publish_quiz(quiz_id: str, payload: PublishPayload, services: Services = Depends(get_services)):
    quiz = await services.catalog.set_published(quiz_id, payload.is_published)
    return {"id": quiz.id, "is_published": quiz.is_published}


@app.post("/api/enrollments", response_model=CourseEnrollment)
async def enroll(payload: EnrollPayload, services: Services = Depends(get_services)):
    return await services.progress.enroll(payload.user_id, payload.course_id)


# ------------------ Attempts ------------------
@app.post("/api/quizzes/{quiz_id}/attempts", response_model=dict)
async def start_attempt(quiz_id: str, payload: StartAttempt, services: Services = Depends(get_services)):
    quiz = await services.catalog.get_quiz(quiz_id)
    if quiz is None:
        raise QuizNotFound(f"Quiz {quiz_id} not found")
    if not quiz.is_published:
        raise NotPublished(f"quiz {quiz_id} is not published")
    questions = await services.catalog.get_questions(quiz_id)
    if not questions:
        raise HTTPException(status_code=400, detail="No questions in this quiz")

    if not payload.retake:
        done = latest_completed(await services.attempts.prior_attempts(payload.user_id, quiz_id))
        if done is not None:
            return {"status": "completed", "attempt_id": done.id, "results": build_results(quiz, questions, done)}

    controller = await services.sessions.open(quiz, questions, payload.user_id)
    return {"status": "in_progress", "attempt_id": controller.attempt_id, **attempt_view(controller)}


@app.get("/api/attempts/{attempt_id}", response_model=dict)
async def get_attempt(attempt_id: str, user_id: str, services: Services = Depends(get_services)):
    return attempt_view(services.sessions.get(attempt_id, user_id))


@app.put("/api/attempts/{attempt_id}/answers/{question_id}", response_model=dict)
async def record_answer(
    attempt_id: str, question_id: str, payload: AnswerPayload, services: Services = Depends(get_services)
):
    controller = services.sessions.get(attempt_id, payload.user_id)
    controller.record_answer(question_id, payload.value)
    question = next(q for q in controller.questions if q.id == question_id)
    return {**attempt_view(controller), "answered": question_id, "answered_explanation": question.explanation}


@app.post("/api/attempts/{attempt_id}/navigate", response_model=dict)
async def navigate(attempt_id: str, payload: NavigatePayload, services: Services = Depends(get_services)):
    controller = services.sessions.get(attempt_id, payload.user_id)
    if payload.action == "next":
        controller.next()
    elif payload.action == "previous":
        controller.previous()
    else:
        if payload.index is None:
            raise HTTPException(status_code=400, detail="index is required for goto")
        controller.go_to(payload.index)
    return attempt_view(controller)


@app.post("/api/attempts/{attempt_id}/submit", response_model=dict)
async def submit_attempt(attempt_id: str, payload: UserPayload, services: Services = Depends(get_services)):
    try:
        controller = services.sessions.get(attempt_id, payload.user_id)
    except AttemptNotFound:
        # Finalized attempts leave the registry; a repeated submit gets the stored result.
        return await attempt_results(attempt_id, payload.user_id, services)
    attempt = await controller.submit()
    return {"attempt": attempt, "results": build_results(controller.quiz, controller.questions, attempt)}


@app.delete("/api/attempts/{attempt_id}", response_model=dict)
async def close_attempt(attempt_id: str, user_id: str, services: Services = Depends(get_services)):
    controller = await services.sessions.close(attempt_id, user_id)
    return {"closed": True, "state": controller.state}


@app.get("/api/attempts/{attempt_id}/results", response_model=dict)
async def attempt_results(attempt_id: str, user_id: str, services: Services = Depends(get_services)):
    attempt = await services.attempts.get(attempt_id)
    if attempt is None or attempt.user_id != user_id:
        raise AttemptNotFound(f"Attempt {attempt_id} not found")
    if not attempt.is_completed:
        raise InvalidState("Attempt is still in progress")
    quiz = await load_quiz(services, attempt.quiz_id, include_unpublished=True)
    questions = await services.catalog.get_questions(quiz.id)
    return {"attempt": attempt, "results": build_results(quiz, questions, attempt)}


# ------------------ Certificates ------------------
@app.post("/api/certificates", response_model=Certificate)
async def issue_certificate(payload: EnrollPayload, services: Services = Depends(get_services)):
    return await services.certificates.issue(payload.user_id, payload.course_id)


@app.get("/api/certificates", response_model=List[Certificate])
async def list_certificates(user_id: str, services: Services = Depends(get_services)):
    return await services.certificates.list_for_user(user_id)


@app.get("/api/certificates/verify/{certificate_id}", response_model=dict)
async def verify_certificate(certificate_id: str, services: Services = Depends(get_services)):
    return await services.certificates.verify(certificate_id)


# Seed endpoint to create a sample quiz for demo
@app.post("/api/seed", response_model=dict)
async def seed_sample(services: Services = Depends(get_services)):
    sample = QuizCreate(
        course_id="workplace-safety",
        title="Workplace Safety Basics",
        description="Short check on the fire and first-aid module.",
        passing_score=70,
        time_limit_minutes=10,
        max_attempts=3,
        is_published=True,
        questions=[
            QuestionCreate(
                text="Which extinguisher is safe on an electrical fire?",
                type="multiple_choice",
                options=["Water", "CO2", "Foam", "Wet chemical"],
                correct_answer="CO2",
                points=2,
                explanation="CO2 does not conduct electricity and leaves no residue.",
            ),
            QuestionCreate(
                text="You should use the elevator during a fire evacuation.",
                type="true_false",
                correct_answer="False",
                explanation="Elevators can fail or open onto the fire floor; use the stairs.",
            ),
            QuestionCreate(
                text="The assembly point is marked with a green ____ sign.",
                type="fill_in_blank",
                correct_answer="exit",
                explanation="Green signs mark exits and safe assembly points.",
            ),
        ],
    )
    quiz = await services.catalog.create_quiz(sample)
    return {"id": quiz.id}


if __name__ == "__main__":
    import uvicorn
    port = get_settings().port
    uvicorn.run(app, host="0.0.0.0", port=port)
