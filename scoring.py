"""Scoring for quiz attempts.

Functions:
- matches: does a submitted answer satisfy a question's key.
- score: weighted percentage (0-100) over a quiz's questions.
- passed: inclusive pass threshold.
- review / build_results: per-question breakdown for the results view.

Everything here is pure; no I/O.
"""
from typing import Mapping, Optional, Sequence

from schemas import Attempt, Question, QuestionReview, Quiz, QuizResults


def matches(question: Question, answer: Optional[str]) -> bool:
    """Return True if `answer` is correct for `question`.

    fill_in_blank compares trimmed, lowercased strings. multiple_choice and
    true_false require the exact option string, case included.
    """
    if answer is None:
        return False
    if question.type == "fill_in_blank":
        return answer.strip().lower() == question.correct_answer.strip().lower()
    return answer == question.correct_answer


def _percentage(earned: int, total: int) -> int:
    # round half up, in integers: floor(earned * 100 / total + 0.5)
    if total <= 0:
        return 0
    return (earned * 200 + total) // (2 * total)


def score(questions: Sequence[Question], answers: Mapping[str, str]) -> int:
    """Weighted score in [0, 100]; unanswered questions earn nothing."""
    assert questions is not None, "questions are required"
    assert answers is not None, "answers are required"
    total = 0
    earned = 0
    for q in questions:
        total += q.points
        if matches(q, answers.get(q.id)):
            earned += q.points
    return _percentage(earned, total)


def passed(score_value: int, passing_score: int) -> bool:
    return score_value >= passing_score


def format_duration(seconds: Optional[int]) -> Optional[str]:
    if seconds is None:
        return None
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def review(questions: Sequence[Question], answers: Mapping[str, str]) -> list:
    rows = []
    for q in questions:
        user_answer = answers.get(q.id)
        ok = matches(q, user_answer)
        rows.append(QuestionReview(
            question_id=q.id,
            text=q.text,
            user_answer=user_answer,
            correct_answer=q.correct_answer,
            is_correct=ok,
            points=q.points,
            points_earned=q.points if ok else 0,
            explanation=q.explanation,
        ))
    return rows


def build_results(quiz: Quiz, questions: Sequence[Question], attempt: Attempt) -> QuizResults:
    """Assemble the results view for a finalized attempt.

    The stored attempt score is authoritative; the per-question rows are
    recomputed from the answers.
    """
    if not attempt.is_completed:
        raise ValueError(f"attempt {attempt.id} is not finalized")
    value = attempt.score or 0
    rows = review(questions, attempt.answers)
    if passed(value, quiz.passing_score):
        band = "pass"
    elif value >= quiz.passing_score * 0.7:
        band = "near"
    else:
        band = "fail"
    return QuizResults(
        quiz_id=quiz.id,
        attempt_id=attempt.id,
        score=value,
        passed=passed(value, quiz.passing_score),
        passing_score=quiz.passing_score,
        band=band,
        correct_count=sum(1 for r in rows if r.is_correct),
        total_questions=len(rows),
        time_taken=format_duration(attempt.time_taken_seconds),
        questions=rows,
    )
