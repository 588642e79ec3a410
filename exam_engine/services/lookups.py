from __future__ import annotations

from .. import db
from ..models import ExamSession, SessionAnswer
from .errors import ExamSessionForbiddenError, ExamSessionNotFoundError


def load_owned_session(session_id: int, requester_id: int | None) -> ExamSession:
    """Fetch a fresh copy of the session and check who is asking.

    ``requester_id=None`` is reserved for engine-internal callers such as the
    expiry sweep.
    """

    session = db.session.get(ExamSession, session_id, populate_existing=True)
    if session is None:
        raise ExamSessionNotFoundError(f"Exam session {session_id} does not exist.")
    if requester_id is not None and session.student_id != requester_id:
        raise ExamSessionForbiddenError("This exam session belongs to another student.")
    return session


def answers_for(session_id: int) -> dict[int, int]:
    """Committed answers of the session keyed by question id."""

    return {
        answer.question_id: answer.selected_index
        for answer in SessionAnswer.query.filter_by(session_id=session_id)
    }
