"""
Exceptions raised by the quiz attempt service.

Every failure the HTTP layer knows how to report derives from QuizServiceError;
main.py maps each class to a status code.
"""


class QuizServiceError(Exception):
    """Base class for quiz service failures."""


class NotPublished(QuizServiceError):
    """The quiz is not published and cannot be attempted."""


class AttemptLimitExceeded(QuizServiceError):
    """The learner has used all attempts allowed for the quiz."""


class PersistenceError(QuizServiceError):
    """A call to the attempt/quiz store failed."""


class ProgressTrackerError(QuizServiceError):
    """Marking course progress after a pass failed."""


class InvalidState(QuizServiceError):
    """Operation not allowed in the attempt's current state."""


class QuizNotFound(QuizServiceError):
    pass


class AttemptNotFound(QuizServiceError):
    pass


class UnknownQuestion(QuizServiceError, KeyError):
    """Answer given for a question that is not part of the quiz."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class CertificateNotEligible(QuizServiceError):
    """No passed attempt exists for the requested course."""
