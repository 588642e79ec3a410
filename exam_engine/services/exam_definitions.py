"""Read-only view of exam definitions consumed by the session engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .. import db
from ..models import (
    EXAM_ACTIVE,
    Exam,
    ExamResult,
    ExamSession,
    SESSION_IN_PROGRESS,
    Student,
)
from .errors import ExamDefinitionNotFoundError, ExamUnavailableError


@dataclass(frozen=True, slots=True)
class QuestionDefinition:
    id: int
    header: str
    alternatives: tuple[str, ...]
    correct_answer_index: int
    educational_indicator: str | None = None

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "questionId": self.id,
            "header": self.header,
            "alternatives": list(self.alternatives),
            "correctAnswerIndex": self.correct_answer_index,
            "educationalIndicator": self.educational_indicator,
        }

    @classmethod
    def from_snapshot(cls, item: dict[str, Any]) -> "QuestionDefinition":
        return cls(
            id=item["questionId"],
            header=item["header"],
            alternatives=tuple(item.get("alternatives") or ()),
            correct_answer_index=item["correctAnswerIndex"],
            educational_indicator=item.get("educationalIndicator"),
        )


@dataclass(frozen=True, slots=True)
class ExamDefinition:
    id: int
    title: str
    questions: tuple[QuestionDefinition, ...]
    time_limit_minutes: int | None
    passing_score: int
    active: bool


@dataclass(slots=True)
class AvailableExam:
    exam: Exam
    question_count: int
    in_progress_session_id: int | None


def _to_definition(exam: Exam) -> ExamDefinition:
    questions = tuple(
        QuestionDefinition(
            id=link.question.id,
            header=link.question.header,
            alternatives=tuple(link.question.alternatives or ()),
            correct_answer_index=link.question.correct_answer_index,
            educational_indicator=link.question.educational_indicator,
        )
        for link in sorted(exam.questions, key=lambda item: item.position)
    )
    return ExamDefinition(
        id=exam.id,
        title=exam.title,
        questions=questions,
        time_limit_minutes=exam.time_limit_minutes,
        passing_score=exam.passing_score,
        active=exam.is_active,
    )


def get_definition(exam_id: int) -> ExamDefinition:
    """Return the definition for ``exam_id``, whether or not it is active."""

    exam = db.session.get(Exam, exam_id)
    if not exam:
        raise ExamDefinitionNotFoundError(f"Exam {exam_id} does not exist.")
    return _to_definition(exam)


def get_startable_definition(exam_id: int) -> ExamDefinition:
    definition = get_definition(exam_id)
    if not definition.active:
        raise ExamUnavailableError("The exam is not available.")
    if not definition.questions:
        raise ExamUnavailableError("The exam has no questions.")
    return definition


def list_available_exams(student: Student) -> list[AvailableExam]:
    """Active exams the student has not finished yet."""

    completed_exam_ids = {
        exam_id
        for (exam_id,) in db.session.query(ExamSession.exam_id)
        .join(ExamResult, ExamResult.session_id == ExamSession.id)
        .filter(ExamSession.student_id == student.id)
        .distinct()
    }
    in_progress = {
        session.exam_id: session.id
        for session in ExamSession.query.filter_by(
            student_id=student.id, status=SESSION_IN_PROGRESS
        )
    }
    exams = Exam.query.filter_by(status=EXAM_ACTIVE).order_by(Exam.id.asc()).all()
    return [
        AvailableExam(
            exam=exam,
            question_count=len(exam.questions),
            in_progress_session_id=in_progress.get(exam.id),
        )
        for exam in exams
        if exam.id not in completed_exam_ids and exam.questions
    ]
