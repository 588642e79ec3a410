from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import (
    SESSION_IN_PROGRESS,
    TERMINAL_SESSION_STATUSES,
    ExamResult,
    ExamSession,
)
from . import clock
from .errors import ExamSessionNotFoundError
from .exam_definitions import get_startable_definition
from .expiry import ensure_session_active, seconds_remaining
from .finalizer import stored_result
from .locks import start_lock
from .lookups import answers_for, load_owned_session


@dataclass(slots=True)
class SessionStartResult:
    session: ExamSession
    resumed: bool


@dataclass(slots=True)
class SessionQuestion:
    question_id: int
    position: int
    header: str
    alternatives: list[str]
    selected_index: int | None
    correct_answer_index: int | None = None


@dataclass(slots=True)
class SessionView:
    session_id: int
    exam_id: int
    attempt_number: int
    status: str
    started_at: datetime
    deadline: datetime | None
    seconds_remaining: int | None
    questions: list[SessionQuestion]
    answers: dict[int, int] = field(default_factory=dict)
    result: ExamResult | None = None


def _find_in_progress(student_id: int, exam_id: int) -> ExamSession | None:
    return (
        ExamSession.query.filter_by(
            student_id=student_id, exam_id=exam_id, status=SESSION_IN_PROGRESS
        )
        .order_by(ExamSession.started_at.desc())
        .first()
    )


def _next_attempt_number(student_id: int, exam_id: int) -> int:
    finished = ExamSession.query.filter(
        ExamSession.student_id == student_id,
        ExamSession.exam_id == exam_id,
        ExamSession.status.in_(TERMINAL_SESSION_STATUSES),
    ).count()
    return finished + 1


def start_session(student_id: int, exam_id: int) -> SessionStartResult:
    """Return the student's open session for the exam, creating one if needed."""

    with start_lock(student_id, exam_id):
        existing = _find_in_progress(student_id, exam_id)
        if existing:
            existing = ensure_session_active(existing)
            if existing.status == SESSION_IN_PROGRESS:
                return SessionStartResult(session=existing, resumed=True)

        definition = get_startable_definition(exam_id)
        now = clock.utcnow()
        deadline = (
            now + timedelta(minutes=definition.time_limit_minutes)
            if definition.time_limit_minutes
            else None
        )
        session = ExamSession(
            student_id=student_id,
            exam_id=exam_id,
            attempt_number=_next_attempt_number(student_id, exam_id),
            status=SESSION_IN_PROGRESS,
            started_at=now,
            deadline=deadline,
            time_limit_minutes=definition.time_limit_minutes,
            passing_score=definition.passing_score,
            question_snapshot=[question.to_snapshot() for question in definition.questions],
            version=0,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # another process opened the session first
            db.session.rollback()
            existing = _find_in_progress(student_id, exam_id)
            if existing is None:
                raise
            existing = ensure_session_active(existing)
            if existing.status == SESSION_IN_PROGRESS:
                return SessionStartResult(session=existing, resumed=True)
            # the winner's session had already run out; it is closed now
            return start_session(student_id, exam_id)

    return SessionStartResult(session=session, resumed=False)


def session_questions(
    session: ExamSession, answers: dict[int, int] | None = None
) -> list[SessionQuestion]:
    if answers is None:
        answers = answers_for(session.id)
    reveal_key = session.is_terminal
    return [
        SessionQuestion(
            question_id=item["questionId"],
            position=position,
            header=item["header"],
            alternatives=list(item.get("alternatives") or []),
            selected_index=answers.get(item["questionId"]),
            correct_answer_index=item["correctAnswerIndex"] if reveal_key else None,
        )
        for position, item in enumerate(session.question_snapshot or [], start=1)
    ]


def build_session_view(session: ExamSession) -> SessionView:
    answers = answers_for(session.id)
    result = stored_result(session.id) if session.is_terminal else None
    return SessionView(
        session_id=session.id,
        exam_id=session.exam_id,
        attempt_number=session.attempt_number,
        status=session.status,
        started_at=session.started_at,
        deadline=session.deadline,
        seconds_remaining=seconds_remaining(session),
        questions=session_questions(session, answers),
        answers=answers,
        result=result,
    )


def get_snapshot(session_id: int, requester_id: int | None) -> SessionView:
    """Current view of the session; expired sessions are closed before returning."""

    session = load_owned_session(session_id, requester_id)
    session = ensure_session_active(session)
    return build_session_view(session)


def get_result(session_id: int, requester_id: int | None) -> ExamResult:
    session = ensure_session_active(load_owned_session(session_id, requester_id))
    if session.status == SESSION_IN_PROGRESS:
        raise ExamSessionNotFoundError("The exam session has not been submitted yet.")
    return stored_result(session.id)


def list_sessions(student_id: int) -> list[ExamSession]:
    return (
        ExamSession.query.filter_by(student_id=student_id)
        .order_by(ExamSession.started_at.desc())
        .all()
    )

