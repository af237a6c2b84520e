"""
Database Schemas for the Training Quiz Service

Each stored Pydantic model maps to a MongoDB collection named after the lowercase
class name (quiz, question, quizattempt, certificate, courseenrollment).
Request/response models live next to the stored ones they wrap.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field, model_validator

QuestionType = Literal["multiple_choice", "true_false", "fill_in_blank"]

# true_false questions never store options; these are the only answers offered.
TRUE_FALSE_OPTIONS = ["True", "False"]


class Question(BaseModel):
    id: str
    quiz_id: Optional[str] = None
    text: str
    type: QuestionType
    options: List[str] = Field(default_factory=list, description="Choices, multiple_choice only")
    correct_answer: str
    points: int = Field(1, gt=0, description="Weight of the question in the score")
    order_index: int = Field(0, ge=0, description="Position of the question within its quiz")
    explanation: Optional[str] = Field(None, description="Shown to the learner once answered")
    image_url: Optional[str] = None

    def choices(self) -> List[str]:
        """Options offered to the learner for this question type."""
        if self.type == "true_false":
            return list(TRUE_FALSE_OPTIONS)
        if self.type == "multiple_choice":
            return list(self.options)
        return []


class QuestionCreate(BaseModel):
    """Authoring payload for a question; stricter than the stored model."""
    text: str = Field(..., min_length=1)
    type: QuestionType
    options: List[str] = Field(default_factory=list)
    correct_answer: str
    points: int = Field(1, gt=0)
    order_index: Optional[int] = Field(None, ge=0)
    explanation: Optional[str] = None
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def check_answer_key(self) -> "QuestionCreate":
        if self.type == "multiple_choice":
            if len(self.options) < 2:
                raise ValueError("multiple_choice questions need at least two options")
            if len(set(self.options)) != len(self.options):
                raise ValueError("multiple_choice options must be unique")
            if self.correct_answer not in self.options:
                raise ValueError("correct_answer must be one of the options")
        elif self.type == "true_false":
            if self.correct_answer not in TRUE_FALSE_OPTIONS:
                raise ValueError("true_false correct_answer must be 'True' or 'False'")
            self.options = []
        else:
            if not self.correct_answer.strip():
                raise ValueError("fill_in_blank correct_answer cannot be blank")
            self.options = []
        return self


class QuestionPublic(BaseModel):
    """Learner-facing view of a question: no answer key, no explanation."""
    id: str
    text: str
    type: QuestionType
    options: List[str]
    points: int
    order_index: int
    image_url: Optional[str] = None

    @classmethod
    def from_question(cls, q: Question) -> "QuestionPublic":
        return cls(
            id=q.id,
            text=q.text,
            type=q.type,
            options=q.choices(),
            points=q.points,
            order_index=q.order_index,
            image_url=q.image_url,
        )


def order_questions(questions: Sequence[Question]) -> List[Question]:
    """Sort questions for presentation; list positions become navigation indexes.

    Raises ValueError when two questions share an order_index.
    """
    ordered = sorted(questions, key=lambda q: q.order_index)
    seen = set()
    for q in ordered:
        if q.order_index in seen:
            raise ValueError(f"duplicate order_index {q.order_index} (question {q.id})")
        seen.add(q.order_index)
    return ordered


class Quiz(BaseModel):
    id: str
    course_id: Optional[str] = None
    title: str
    description: str = ""
    passing_score: int = Field(70, ge=0, le=100, description="Minimum percentage to pass (inclusive)")
    time_limit_minutes: Optional[int] = Field(None, gt=0, description="None means untimed")
    max_attempts: int = Field(3, ge=1)
    is_published: bool = False


class QuizCreate(BaseModel):
    course_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    passing_score: int = Field(70, ge=0, le=100)
    time_limit_minutes: Optional[int] = Field(None, gt=0)
    max_attempts: int = Field(3, ge=1)
    is_published: bool = False
    questions: List[QuestionCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def assign_order(self) -> "QuizCreate":
        # Questions without an explicit order_index keep their list position.
        for position, q in enumerate(self.questions):
            if q.order_index is None:
                q.order_index = position
        indexes = [q.order_index for q in self.questions]
        if len(set(indexes)) != len(indexes):
            raise ValueError("order_index values must be unique within a quiz")
        return self


class QuizSummary(BaseModel):
    id: str
    course_id: Optional[str] = None
    title: str
    description: str
    passing_score: int
    time_limit_minutes: Optional[int] = None
    max_attempts: int
    is_published: bool
    questions_count: int


class Attempt(BaseModel):
    id: str
    quiz_id: str
    user_id: str
    answers: Dict[str, str] = Field(default_factory=dict, description="Answer string per question id")
    started_at: datetime
    completed_at: Optional[datetime] = None
    score: Optional[int] = Field(None, ge=0, le=100)
    time_taken_seconds: Optional[int] = Field(None, ge=0)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class Finalization(BaseModel):
    """The single terminal write applied to an attempt."""
    answers: Dict[str, str]
    score: int = Field(..., ge=0, le=100)
    completed_at: datetime
    time_taken_seconds: int = Field(..., ge=0)


class AttemptState(str, Enum):
    UNINITIALIZED = "uninitialized"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    FINALIZED = "finalized"


class AttemptSnapshot(BaseModel):
    state: AttemptState
    attempt_id: Optional[str] = None
    current_question_index: int = 0
    total_questions: int = 0
    answers: Dict[str, str] = Field(default_factory=dict)
    revealed_explanations: List[str] = Field(default_factory=list)
    remaining_seconds: Optional[int] = None
    unsaved_changes: bool = False
    finalized_attempt: Optional[Attempt] = None


class QuestionReview(BaseModel):
    question_id: str
    text: str
    user_answer: Optional[str] = None
    correct_answer: str
    is_correct: bool
    points: int
    points_earned: int
    explanation: Optional[str] = None


class QuizResults(BaseModel):
    quiz_id: str
    attempt_id: str
    score: int
    passed: bool
    passing_score: int
    band: Literal["pass", "near", "fail"]
    correct_count: int
    total_questions: int
    time_taken: Optional[str] = Field(None, description="e.g. '4m 12s'")
    questions: List[QuestionReview] = Field(default_factory=list)


class CourseEnrollment(BaseModel):
    user_id: str
    course_id: str
    enrolled_at: datetime
    completed_at: Optional[datetime] = None
    progress_percentage: int = Field(0, ge=0, le=100)


class Certificate(BaseModel):
    id: str
    certificate_id: str = Field(..., description="Public code printed on the certificate")
    user_id: str
    course_id: str
    score: int = Field(..., ge=0, le=100)
    issued_at: datetime
