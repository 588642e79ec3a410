"""Caller-visible failures raised by the exam session services."""

from __future__ import annotations


class ExamSessionError(RuntimeError):
    """Base class for recoverable exam session problems."""

    code = "exam_session_error"


class ExamSessionNotFoundError(ExamSessionError):
    """Raised when a session id does not exist."""

    code = "not_found"


class ExamSessionForbiddenError(ExamSessionError):
    """Raised when a student touches a session they do not own."""

    code = "forbidden"


class ExamSessionClosedError(ExamSessionError):
    """Raised when an answer is written to a session that has left IN_PROGRESS."""

    code = "session_closed"


class ExamDeadlinePassedError(ExamSessionClosedError):
    """Raised when an answer arrives at or after the session deadline."""

    code = "deadline_passed"


class ExamQuestionScopeError(ExamSessionError):
    """Raised when an answer references a question outside the exam."""

    code = "invalid_question"


class ExamAnswerRangeError(ExamQuestionScopeError):
    """Raised when the selected index is not one of the question's alternatives."""

    code = "invalid_answer"


class ExamDefinitionUnavailableError(ExamSessionError):
    """Raised when an exam cannot be started."""

    code = "definition_unavailable"


class ExamDefinitionNotFoundError(ExamDefinitionUnavailableError):
    code = "definition_not_found"


class ExamUnavailableError(ExamDefinitionUnavailableError):
    code = "exam_unavailable"


__all__ = [
    "ExamSessionError",
    "ExamSessionNotFoundError",
    "ExamSessionForbiddenError",
    "ExamSessionClosedError",
    "ExamDeadlinePassedError",
    "ExamQuestionScopeError",
    "ExamAnswerRangeError",
    "ExamDefinitionUnavailableError",
    "ExamDefinitionNotFoundError",
    "ExamUnavailableError",
]
