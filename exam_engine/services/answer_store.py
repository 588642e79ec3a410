from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, update

from .. import db
from ..models import (
    SESSION_EXPIRED_SUBMITTED,
    SESSION_IN_PROGRESS,
    SESSION_SUBMITTED,
    ExamSession,
    SessionAnswer,
)
from . import clock
from .errors import (
    ExamAnswerRangeError,
    ExamDeadlinePassedError,
    ExamQuestionScopeError,
    ExamSessionClosedError,
)
from .expiry import ensure_session_active
from .locks import session_lock
from .lookups import load_owned_session


def _ensure_writable(session: ExamSession, now: datetime) -> None:
    if session.status == SESSION_SUBMITTED:
        raise ExamSessionClosedError("Exam session already finished.")
    # the timestamp decides, not only the stored status
    if session.status == SESSION_EXPIRED_SUBMITTED or (
        session.deadline is not None and now >= session.deadline
    ):
        raise ExamDeadlinePassedError("The time limit for this exam has passed.")


def _question_in_scope(session: ExamSession, question_id: int) -> dict:
    item = next(
        (entry for entry in session.question_snapshot or [] if entry["questionId"] == question_id),
        None,
    )
    if item is None:
        raise ExamQuestionScopeError("Question not part of this exam.")
    return item


def _touch_open_session(session_id: int, now: datetime) -> bool:
    """Bump the session version if it still accepts answers.

    Holding this row update until commit keeps the finaliser's compare-and-swap
    from landing between the check and the answer write.
    """

    outcome = db.session.execute(
        update(ExamSession)
        .where(
            ExamSession.id == session_id,
            ExamSession.status == SESSION_IN_PROGRESS,
            or_(ExamSession.deadline.is_(None), ExamSession.deadline > now),
        )
        .values(version=ExamSession.version + 1)
        .execution_options(synchronize_session=False)
    )
    return outcome.rowcount == 1


def save_answer(
    session_id: int,
    question_id: int,
    selected_index: int,
    *,
    requester_id: int | None = None,
    time_spent_seconds: int | None = None,
) -> SessionAnswer:
    """Insert or overwrite the answer for ``question_id`` in an open session."""

    with session_lock(session_id):
        now = clock.utcnow()
        session = ensure_session_active(load_owned_session(session_id, requester_id), now=now)
        _ensure_writable(session, now)

        question = _question_in_scope(session, question_id)
        if not 0 <= selected_index < len(question.get("alternatives") or []):
            raise ExamAnswerRangeError("Selected answer is not one of the alternatives.")

        if not _touch_open_session(session_id, now):
            db.session.rollback()
            later = clock.utcnow()
            session = ensure_session_active(
                load_owned_session(session_id, requester_id), now=later
            )
            _ensure_writable(session, later)
            raise ExamSessionClosedError("Exam session already finished.")

        answer = SessionAnswer.query.filter_by(
            session_id=session_id, question_id=question_id
        ).first()
        if answer is None:
            answer = SessionAnswer(
                session_id=session_id,
                question_id=question_id,
                selected_index=selected_index,
                time_spent_seconds=time_spent_seconds,
                answered_at=now,
            )
            db.session.add(answer)
        elif answer.selected_index != selected_index:
            answer.selected_index = selected_index
            answer.answered_at = now
            if time_spent_seconds is not None:
                answer.time_spent_seconds = time_spent_seconds

        db.session.commit()
        return answer
