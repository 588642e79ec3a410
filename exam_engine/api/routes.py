from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from ..models import ExamResult, ExamSession
from ..services import (
    ExamDefinitionNotFoundError,
    ExamQuestionScopeError,
    ExamSessionClosedError,
    ExamSessionError,
    ExamSessionForbiddenError,
    ExamSessionNotFoundError,
    ExamUnavailableError,
    get_result,
    get_snapshot,
    list_available_exams,
    list_results,
    list_sessions,
    save_answer,
    start_session,
    submit_session,
)
from ..services.expiry import seconds_remaining
from ..services.session_manager import SessionView, build_session_view
from . import api_bp

ERROR_STATUS: dict[type[ExamSessionError], int] = {
    ExamSessionNotFoundError: 404,
    ExamSessionForbiddenError: 403,
    ExamSessionClosedError: 409,
    ExamQuestionScopeError: 400,
    ExamDefinitionNotFoundError: 404,
    ExamUnavailableError: 409,
}


def _json_error(message: str, status: int = 400, *, code: str = "bad_request", **extra: Any):
    return jsonify({"error": message, "code": code, **extra}), status


def _service_error(exc: ExamSessionError, *, session_id: int | None = None):
    status = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS),
        400,
    )
    extra: dict[str, Any] = {}
    if isinstance(exc, ExamSessionClosedError) and session_id is not None:
        extra["resultAvailable"] = (
            ExamResult.query.filter_by(session_id=session_id).first() is not None
        )
    return _json_error(str(exc), status, code=exc.code, **extra)


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _serialise_result(result: ExamResult) -> dict[str, Any]:
    return {
        "resultId": result.id,
        "sessionId": result.session_id,
        "totalQuestions": result.total_questions,
        "totalScore": result.total_score,
        "percentage": result.percentage,
        "passed": result.passed,
        "completedAt": result.completed_at.isoformat(),
        "autoSubmitted": result.auto_submitted,
        "timeSpentSeconds": result.time_spent_seconds,
    }


def _serialise_view(view: SessionView) -> dict[str, Any]:
    questions = []
    for question in view.questions:
        item = {
            "questionId": question.question_id,
            "position": question.position,
            "header": question.header,
            "alternatives": question.alternatives,
            "selectedIndex": question.selected_index,
        }
        if question.correct_answer_index is not None:
            item["correctAnswerIndex"] = question.correct_answer_index
        questions.append(item)
    return {
        "sessionId": view.session_id,
        "examId": view.exam_id,
        "attemptNumber": view.attempt_number,
        "state": view.status,
        "startedAt": view.started_at.isoformat(),
        "deadline": view.deadline.isoformat() if view.deadline else None,
        "secondsRemaining": view.seconds_remaining,
        "questions": questions,
        "answers": {str(question_id): index for question_id, index in view.answers.items()},
        "result": _serialise_result(view.result) if view.result else None,
    }


def _serialise_session_summary(session: ExamSession) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "examId": session.exam_id,
        "attemptNumber": session.attempt_number,
        "state": session.status,
        "startedAt": session.started_at.isoformat(),
        "deadline": session.deadline.isoformat() if session.deadline else None,
        "finishedAt": session.finished_at.isoformat() if session.finished_at else None,
        "secondsRemaining": seconds_remaining(session),
    }


@api_bp.get("/exams/available")
@login_required
def available_exams():
    payload = [
        {
            "examId": item.exam.id,
            "title": item.exam.title,
            "description": item.exam.description,
            "questionCount": item.question_count,
            "timeLimitMinutes": item.exam.time_limit_minutes,
            "passingScore": item.exam.passing_score,
            "inProgressSessionId": item.in_progress_session_id,
        }
        for item in list_available_exams(current_user)
    ]
    return jsonify({"exams": payload})


@api_bp.post("/exams/<int:exam_id>/start")
@login_required
def start_exam(exam_id: int):
    try:
        started = start_session(current_user.id, exam_id)
    except ExamSessionError as exc:
        return _service_error(exc)

    session = started.session
    current_app.logger.info(
        "exam session started",
        extra={"session_id": session.id, "student_id": current_user.id, "resumed": started.resumed},
    )
    body = {
        "sessionId": session.id,
        "resumed": started.resumed,
        "session": _serialise_view(build_session_view(session)),
    }
    return jsonify(body), 200 if started.resumed else 201


@api_bp.get("/sessions")
@login_required
def sessions_overview():
    sessions = list_sessions(current_user.id)
    return jsonify({"sessions": [_serialise_session_summary(session) for session in sessions]})


@api_bp.get("/sessions/<int:session_id>")
@login_required
def session_snapshot(session_id: int):
    try:
        view = get_snapshot(session_id, current_user.id)
    except ExamSessionError as exc:
        return _service_error(exc, session_id=session_id)
    return jsonify(_serialise_view(view))


@api_bp.post("/sessions/<int:session_id>/answers")
@login_required
def answer_question(session_id: int):
    data = request.get_json(silent=True) or {}
    question_id = _parse_int(data.get("questionId"))
    selected_index = _parse_int(data.get("selectedIndex"))
    if question_id is None or selected_index is None:
        return _json_error("questionId and selectedIndex must be integers.")

    time_spent = None
    if data.get("timeSpent") is not None:
        time_spent = _parse_int(data.get("timeSpent"))
        if time_spent is None or time_spent < 0:
            return _json_error("timeSpent must be a non-negative number of seconds.")

    try:
        answer = save_answer(
            session_id,
            question_id,
            selected_index,
            requester_id=current_user.id,
            time_spent_seconds=time_spent,
        )
    except ExamSessionError as exc:
        return _service_error(exc, session_id=session_id)

    return jsonify(
        {
            "saved": True,
            "questionId": answer.question_id,
            "selectedIndex": answer.selected_index,
        }
    )


@api_bp.post("/sessions/<int:session_id>/submit")
@login_required
def submit_exam(session_id: int):
    try:
        result = submit_session(session_id, current_user.id)
    except ExamSessionError as exc:
        return _service_error(exc, session_id=session_id)
    current_app.logger.info(
        "exam session submitted",
        extra={"session_id": session_id, "student_id": current_user.id},
    )
    return jsonify(_serialise_result(result))


@api_bp.get("/sessions/<int:session_id>/result")
@login_required
def session_result(session_id: int):
    try:
        result = get_result(session_id, current_user.id)
    except ExamSessionError as exc:
        return _service_error(exc, session_id=session_id)
    return jsonify(_serialise_result(result))


@api_bp.get("/results")
@login_required
def my_results():
    results = list_results(current_user.id)
    return jsonify(
        {
            "results": [_serialise_result(result) for result in results],
            "total": len(results),
        }
    )
