"""
Tests for the scoring engine.

Covers answer matching per question type, weighted percentages, the pass
threshold and the results breakdown.
"""
import random
from datetime import datetime, timezone

import pytest

from schemas import Attempt
from scoring import build_results, format_duration, matches, passed, review, score
from tests.conftest import make_question, make_quiz


class TestMatches:

    def test_fill_in_blank_ignores_case_and_whitespace(self):
        q = make_question("q", type="fill_in_blank", correct="Ottawa")
        assert matches(q, " ottawa  ")

    def test_fill_in_blank_trims_the_key_too(self):
        q = make_question("q", type="fill_in_blank", correct="  Ottawa ")
        assert matches(q, "OTTAWA")

    def test_true_false_is_case_sensitive(self):
        q = make_question("q", type="true_false", correct="True")
        assert not matches(q, "true")
        assert matches(q, "True")

    def test_multiple_choice_is_exact(self):
        q = make_question("q", correct="Blue", options=["Blue", "Red"])
        assert matches(q, "Blue")
        assert not matches(q, "blue")
        assert not matches(q, " Blue")

    def test_missing_answer_never_matches(self):
        q = make_question("q", type="fill_in_blank", correct="")
        assert not matches(q, None)

    def test_question_without_options_never_matches_a_choice(self):
        # authoring defect: empty options, key not offered
        q = make_question("q", correct="A", options=[])
        assert not matches(q, "B")


class TestScore:

    def test_weighted_scoring(self):
        questions = [
            make_question("q1", correct="A", points=1, order=0),
            make_question("q2", correct="A", points=1, order=1),
            make_question("q3", correct="A", points=2, order=2),
        ]
        assert score(questions, {"q1": "A", "q2": "B", "q3": "A"}) == 75

    def test_unanswered_earns_nothing(self):
        questions = [make_question("q1", correct="A"), make_question("q2", correct="A", order=1)]
        assert score(questions, {"q1": "A"}) == 50
        assert score(questions, {}) == 0

    def test_no_questions_scores_zero(self):
        assert score([], {}) == 0

    def test_rounds_half_up(self):
        # 1/8 = 12.5% -> 13
        questions = [make_question(f"q{i}", correct="A", order=i) for i in range(8)]
        assert score(questions, {"q0": "A"}) == 13

    def test_two_thirds_rounds_to_67(self):
        questions = [make_question(f"q{i}", correct="A", order=i) for i in range(3)]
        assert score(questions, {"q0": "A", "q1": "A"}) == 67

    def test_answers_for_unknown_questions_are_ignored(self):
        questions = [make_question("q1", correct="A")]
        assert score(questions, {"q1": "A", "other": "A"}) == 100

    def test_missing_inputs_fail_fast(self):
        with pytest.raises(AssertionError):
            score(None, {})
        with pytest.raises(AssertionError):
            score([], None)

    def test_total_and_deterministic(self):
        rng = random.Random(7)
        kinds = ["multiple_choice", "true_false", "fill_in_blank"]
        for _ in range(200):
            questions = []
            answers = {}
            for i in range(rng.randint(0, 6)):
                kind = rng.choice(kinds)
                correct = {"multiple_choice": "A", "true_false": "True", "fill_in_blank": "Paris"}[kind]
                questions.append(make_question(f"q{i}", type=kind, correct=correct, points=rng.randint(1, 5), order=i))
                if rng.random() < 0.7:
                    answers[f"q{i}"] = rng.choice(["A", "B", "True", "true", " paris ", "Lyon"])
            first = score(questions, answers)
            assert isinstance(first, int)
            assert 0 <= first <= 100
            assert score(questions, answers) == first


class TestPassed:

    def test_threshold_is_inclusive(self):
        assert passed(80, 80)
        assert not passed(79, 80)

    def test_zero_threshold_always_passes(self):
        assert passed(0, 0)


class TestResults:

    def _attempt(self, answers, value, taken=252):
        return Attempt(
            id="att-1",
            quiz_id="quiz-1",
            user_id="u1",
            answers=answers,
            started_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
            completed_at=datetime(2026, 1, 5, 9, 4, 12, tzinfo=timezone.utc),
            score=value,
            time_taken_seconds=taken,
        )

    def test_review_rows(self, two_questions):
        rows = review(two_questions, {"q1": "A", "q2": "C"})
        assert [r.is_correct for r in rows] == [True, False]
        assert rows[0].points_earned == 1
        assert rows[0].explanation == "A is right"
        assert rows[1].user_answer == "C"

    def test_build_results_pass(self, two_questions):
        results = build_results(make_quiz(), two_questions, self._attempt({"q1": "A"}, 50))
        assert results.passed
        assert results.band == "pass"
        assert results.correct_count == 1
        assert results.total_questions == 2
        assert results.time_taken == "4m 12s"

    def test_build_results_near_miss(self, two_questions):
        results = build_results(make_quiz(passing_score=60), two_questions, self._attempt({"q1": "A"}, 50))
        assert not results.passed
        assert results.band == "near"

    def test_build_results_fail(self, two_questions):
        results = build_results(make_quiz(passing_score=80), two_questions, self._attempt({}, 0))
        assert results.band == "fail"

    def test_build_results_requires_finalized_attempt(self, two_questions):
        attempt = Attempt(id="a", quiz_id="quiz-1", user_id="u1",
                          started_at=datetime(2026, 1, 5, tzinfo=timezone.utc))
        with pytest.raises(ValueError):
            build_results(make_quiz(), two_questions, attempt)

    def test_format_duration(self):
        assert format_duration(None) is None
        assert format_duration(59) == "0m 59s"
        assert format_duration(125) == "2m 5s"
