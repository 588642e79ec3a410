"""Service layer for the exam session lifecycle."""

from .answer_store import save_answer
from .errors import (
    ExamAnswerRangeError,
    ExamDeadlinePassedError,
    ExamDefinitionNotFoundError,
    ExamDefinitionUnavailableError,
    ExamQuestionScopeError,
    ExamSessionClosedError,
    ExamSessionError,
    ExamSessionForbiddenError,
    ExamSessionNotFoundError,
    ExamUnavailableError,
)
from .exam_definitions import (
    ExamDefinition,
    QuestionDefinition,
    get_definition,
    list_available_exams,
)
from .expiry import ExpirySweeper, ensure_session_active, sweep_expired_sessions
from .finalizer import finalise_session, list_results, score_answers, submit_session
from .session_manager import (
    SessionStartResult,
    SessionView,
    get_result,
    get_snapshot,
    list_sessions,
    start_session,
)

__all__ = [
    "save_answer",
    "ExamAnswerRangeError",
    "ExamDeadlinePassedError",
    "ExamDefinitionNotFoundError",
    "ExamDefinitionUnavailableError",
    "ExamQuestionScopeError",
    "ExamSessionClosedError",
    "ExamSessionError",
    "ExamSessionForbiddenError",
    "ExamSessionNotFoundError",
    "ExamUnavailableError",
    "ExamDefinition",
    "QuestionDefinition",
    "get_definition",
    "list_available_exams",
    "ExpirySweeper",
    "ensure_session_active",
    "sweep_expired_sessions",
    "finalise_session",
    "list_results",
    "score_answers",
    "submit_session",
    "SessionStartResult",
    "SessionView",
    "get_result",
    "get_snapshot",
    "list_sessions",
    "start_session",
]
