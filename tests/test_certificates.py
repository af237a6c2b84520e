"""Tests for certificate issuance and verification."""
import re

import pytest

from certificates import CertificateService, _base36, generate_certificate_id
from errors import CertificateNotEligible
from schemas import Finalization, QuizCreate, QuestionCreate
from stores import InMemoryAttemptStore, InMemoryCertificateStore, InMemoryQuizCatalog


def test_base36():
    assert _base36(0) == "0"
    assert _base36(35) == "z"
    assert _base36(36) == "10"


def test_certificate_id_format():
    code = generate_certificate_id(now_ms=36 ** 3)
    assert re.fullmatch(r"CERT-1000-[0-9A-Z]{5}", code)


@pytest.fixture
def parts():
    return InMemoryCertificateStore(), InMemoryQuizCatalog(), InMemoryAttemptStore()


async def finished_attempt(attempts, quiz_id, score, clock):
    attempt_id = await attempts.create("u1", quiz_id, clock())
    await attempts.finalize(
        attempt_id, Finalization(answers={}, score=score, completed_at=clock(), time_taken_seconds=5)
    )


@pytest.mark.asyncio
async def test_issue_uses_best_passing_score(parts, clock):
    certs, catalog, attempts = parts
    quiz = await catalog.create_quiz(QuizCreate(
        course_id="c1", title="Q", passing_score=60, is_published=True,
        questions=[QuestionCreate(text="t", type="true_false", correct_answer="True")],
    ))
    service = CertificateService(certs, catalog, attempts)

    await finished_attempt(attempts, quiz.id, 40, clock)
    with pytest.raises(CertificateNotEligible):
        await service.issue("u1", "c1")

    await finished_attempt(attempts, quiz.id, 70, clock)
    await finished_attempt(attempts, quiz.id, 90, clock)
    cert = await service.issue("u1", "c1")
    assert cert.score == 90
    assert (await service.issue("u1", "c1")).certificate_id == cert.certificate_id

    result = await service.verify(cert.certificate_id.lower())
    assert result["valid"] is True
    assert result["certificate"].user_id == "u1"
