"""Exactly-once finalisation and scoring of exam sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

from sqlalchemy import update

from .. import db
from ..models import (
    SESSION_EXPIRED_SUBMITTED,
    SESSION_IN_PROGRESS,
    SESSION_SUBMITTED,
    ExamResult,
    ExamSession,
)
from . import clock
from .errors import ExamSessionNotFoundError
from .exam_definitions import QuestionDefinition
from .locks import session_lock
from .lookups import answers_for, load_owned_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScoreSummary:
    total_questions: int
    total_score: int
    percentage: int


@dataclass(slots=True)
class Finalisation:
    result: ExamResult
    transitioned: bool


def percentage_of(score: int, total: int) -> int:
    """``score / total * 100`` rounded half-up to a whole percent."""

    if total <= 0:
        return 0
    value = Decimal(score) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score_answers(
    questions: Sequence[QuestionDefinition], answers: Mapping[int, int]
) -> ScoreSummary:
    # unanswered questions count as incorrect
    total_score = sum(
        1
        for question in questions
        if answers.get(question.id) == question.correct_answer_index
    )
    total = len(questions)
    return ScoreSummary(
        total_questions=total,
        total_score=total_score,
        percentage=percentage_of(total_score, total),
    )


def _time_spent_seconds(session: ExamSession, completed_at, *, auto_submitted: bool) -> int:
    elapsed = max(0, int((completed_at - session.started_at).total_seconds()))
    if auto_submitted and session.time_limit_minutes:
        elapsed = min(elapsed, session.time_limit_minutes * 60)
    return elapsed


def stored_result(session_id: int) -> ExamResult:
    result = ExamResult.query.filter_by(session_id=session_id).first()
    if result is None:
        raise RuntimeError(f"Exam session {session_id} is closed but has no result.")
    return result


def _claim(session_id: int, status: str, finished_at) -> bool:
    """Compare-and-swap IN_PROGRESS -> ``status``; True only for the winner."""

    outcome = db.session.execute(
        update(ExamSession)
        .where(ExamSession.id == session_id, ExamSession.status == SESSION_IN_PROGRESS)
        .values(status=status, finished_at=finished_at)
        .execution_options(synchronize_session=False)
    )
    return outcome.rowcount == 1


def finalise_session(session_id: int, *, auto_submitted: bool = False) -> Finalisation:
    """Close the session and record its result, or return the result already recorded.

    Every terminal transition goes through here: explicit submits, the lazy
    deadline check and the background sweep. A session whose deadline has
    passed always closes as ``EXPIRED_SUBMITTED``.
    """

    with session_lock(session_id):
        session = db.session.get(
            ExamSession, session_id, populate_existing=True, with_for_update=True
        )
        if session is None:
            raise ExamSessionNotFoundError(f"Exam session {session_id} does not exist.")
        if session.is_terminal:
            db.session.rollback()
            return Finalisation(result=stored_result(session_id), transitioned=False)

        now = clock.utcnow()
        expired = session.deadline is not None and now >= session.deadline
        auto = auto_submitted or expired
        status = SESSION_EXPIRED_SUBMITTED if auto else SESSION_SUBMITTED

        if not _claim(session_id, status, now):
            db.session.rollback()
            return Finalisation(result=stored_result(session_id), transitioned=False)

        answers = answers_for(session_id)
        questions = [QuestionDefinition.from_snapshot(item) for item in session.question_snapshot]
        summary = score_answers(questions, answers)

        result = ExamResult(
            session_id=session_id,
            total_questions=summary.total_questions,
            total_score=summary.total_score,
            percentage=summary.percentage,
            passed=summary.percentage >= session.passing_score,
            completed_at=now,
            auto_submitted=auto,
            time_spent_seconds=_time_spent_seconds(session, now, auto_submitted=auto),
        )
        db.session.add(result)
        db.session.commit()

    logger.info(
        "exam session finalised",
        extra={
            "session_id": session_id,
            "status": status,
            "score": summary.total_score,
            "total": summary.total_questions,
        },
    )
    return Finalisation(result=result, transitioned=True)


def submit_session(
    session_id: int, requester_id: int | None, *, auto_submitted: bool = False
) -> ExamResult:
    """Submit the session; repeated or racing calls all get the same result."""

    session = load_owned_session(session_id, requester_id)
    if session.is_terminal:
        return stored_result(session.id)
    return finalise_session(session.id, auto_submitted=auto_submitted).result


def list_results(student_id: int) -> list[ExamResult]:
    return (
        ExamResult.query.join(ExamSession, ExamResult.session_id == ExamSession.id)
        .filter(ExamSession.student_id == student_id)
        .order_by(ExamResult.completed_at.desc(), ExamResult.id.desc())
        .all()
    )
