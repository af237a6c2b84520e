"""Course certificates.

A learner earns one certificate per course, issued from their best passed
attempt on any of the course's quizzes. Certificates carry a public code
(CERT-XXXXXXXX-XXXXX) that anyone can verify.
"""
import logging
import secrets
import time
from typing import Any, Dict, List, Optional

import scoring
from errors import CertificateNotEligible
from schemas import Certificate

logger = logging.getLogger(__name__)

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_ALPHABET[r])
    return "".join(reversed(digits))


def generate_certificate_id(now_ms: Optional[int] = None) -> str:
    """Public certificate code: base36 timestamp plus five random base36 chars."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(5))
    return f"CERT-{_base36(now_ms)}-{suffix}".upper()


class CertificateService:
    def __init__(self, certificates, catalog, attempts):
        self.certificates = certificates
        self.catalog = catalog
        self.attempts = attempts

    async def best_passing_score(self, user_id: str, course_id: str) -> Optional[int]:
        best = None
        for quiz in await self.catalog.quizzes_for_course(course_id):
            for attempt in await self.attempts.prior_attempts(user_id, quiz.id):
                if not attempt.is_completed or attempt.score is None:
                    continue
                if scoring.passed(attempt.score, quiz.passing_score) and (best is None or attempt.score > best):
                    best = attempt.score
        return best

    async def issue(self, user_id: str, course_id: str) -> Certificate:
        """Return the user's certificate for the course, creating it on first call."""
        existing = await self.certificates.find(user_id, course_id)
        if existing is not None:
            return existing
        best = await self.best_passing_score(user_id, course_id)
        if best is None:
            raise CertificateNotEligible(f"user {user_id} has no passed quiz in course {course_id}")
        cert = await self.certificates.insert(user_id, course_id, generate_certificate_id(), best)
        logger.info("issued certificate %s to %s for course %s", cert.certificate_id, user_id, course_id)
        return cert

    async def verify(self, certificate_id: str) -> Dict[str, Any]:
        cert = await self.certificates.find_by_code(certificate_id.strip().upper())
        if cert is None:
            return {"valid": False, "message": "Certificate not found"}
        return {"valid": True, "certificate": cert}

    async def list_for_user(self, user_id: str) -> List[Certificate]:
        return await self.certificates.list_for_user(user_id)
