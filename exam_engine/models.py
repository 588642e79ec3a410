from __future__ import annotations

from datetime import datetime, timedelta

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum, Index, UniqueConstraint, text
from werkzeug.security import check_password_hash, generate_password_hash

from . import db

SESSION_IN_PROGRESS = "IN_PROGRESS"
SESSION_SUBMITTED = "SUBMITTED"
SESSION_EXPIRED_SUBMITTED = "EXPIRED_SUBMITTED"
TERMINAL_SESSION_STATUSES = frozenset({SESSION_SUBMITTED, SESSION_EXPIRED_SUBMITTED})

EXAM_ACTIVE = "ACTIVE"
EXAM_INACTIVE = "INACTIVE"

DEFAULT_PASSING_SCORE = 60


class Student(UserMixin, db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    auth_tokens = db.relationship(
        "StudentAuthToken", back_populates="student", cascade="all, delete-orphan"
    )
    exam_sessions = db.relationship(
        "ExamSession", back_populates="student", cascade="all, delete-orphan"
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def issue_token(self, *, expires_at: datetime | None = None, ttl_days: int = 7) -> "StudentAuthToken":
        from secrets import token_urlsafe

        expiry = expires_at or datetime.utcnow() + timedelta(days=ttl_days)
        token = StudentAuthToken(
            token=token_urlsafe(32), student=self, expires_at=expiry, revoked=False
        )
        db.session.add(token)
        return token


class StudentAuthToken(db.Model):
    __tablename__ = "student_auth_tokens"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    token = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)

    student = db.relationship("Student", back_populates="auth_tokens")


class Exam(db.Model):
    __tablename__ = "exams"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    time_limit_minutes = db.Column(db.Integer)  # NULL means untimed
    passing_score = db.Column(db.Integer, nullable=False, default=DEFAULT_PASSING_SCORE)
    status = db.Column(
        Enum(EXAM_ACTIVE, EXAM_INACTIVE, name="exam_status"),
        nullable=False,
        default=EXAM_ACTIVE,
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    questions = db.relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.position",
    )
    sessions = db.relationship("ExamSession", back_populates="exam")

    __table_args__ = (
        CheckConstraint("passing_score BETWEEN 0 AND 100", name="passing_score_range"),
        CheckConstraint(
            "time_limit_minutes IS NULL OR time_limit_minutes > 0", name="time_limit_positive"
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == EXAM_ACTIVE


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    header = db.Column(db.Text, nullable=False)
    alternatives = db.Column(db.JSON, nullable=False, default=list)
    correct_answer_index = db.Column(db.Integer, nullable=False)
    educational_indicator = db.Column(db.String(255))


class ExamQuestion(db.Model):
    __tablename__ = "exam_questions"

    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    exam = db.relationship("Exam", back_populates="questions")
    question = db.relationship("Question")

    __table_args__ = (
        UniqueConstraint("exam_id", "question_id", name="uq_exam_question"),
        UniqueConstraint("exam_id", "position", name="uq_exam_position"),
    )


class ExamSession(db.Model):
    __tablename__ = "exam_sessions"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        Enum(
            SESSION_IN_PROGRESS,
            SESSION_SUBMITTED,
            SESSION_EXPIRED_SUBMITTED,
            name="exam_session_status",
        ),
        nullable=False,
        default=SESSION_IN_PROGRESS,
    )
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    deadline = db.Column(db.DateTime)  # NULL for untimed exams
    finished_at = db.Column(db.DateTime)
    time_limit_minutes = db.Column(db.Integer)
    passing_score = db.Column(db.Integer, nullable=False, default=DEFAULT_PASSING_SCORE)
    # question list and answer key frozen at start
    question_snapshot = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False, default=0)

    student = db.relationship("Student", back_populates="exam_sessions")
    exam = db.relationship("Exam", back_populates="sessions")
    answers = db.relationship(
        "SessionAnswer", back_populates="session", cascade="all, delete-orphan"
    )
    result = db.relationship(
        "ExamResult", back_populates="session", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index(
            "uq_exam_sessions_active",
            "student_id",
            "exam_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    @property
    def question_ids(self) -> list[int]:
        return [item["questionId"] for item in self.question_snapshot or []]


class SessionAnswer(db.Model):
    __tablename__ = "session_answers"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("exam_sessions.id"), nullable=False)
    question_id = db.Column(db.Integer, nullable=False)
    selected_index = db.Column(db.Integer, nullable=False)
    time_spent_seconds = db.Column(db.Integer)
    answered_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    session = db.relationship("ExamSession", back_populates="answers")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_session_answer_question"),
    )


class ExamResult(db.Model):
    __tablename__ = "exam_results"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("exam_sessions.id"), unique=True, nullable=False
    )
    total_questions = db.Column(db.Integer, nullable=False)
    total_score = db.Column(db.Integer, nullable=False)
    percentage = db.Column(db.Integer, nullable=False)
    passed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=False)
    auto_submitted = db.Column(db.Boolean, nullable=False, default=False)
    time_spent_seconds = db.Column(db.Integer, nullable=False)

    session = db.relationship("ExamSession", back_populates="result")


__all__ = [
    "Student",
    "StudentAuthToken",
    "Exam",
    "Question",
    "ExamQuestion",
    "ExamSession",
    "SessionAnswer",
    "ExamResult",
    "SESSION_IN_PROGRESS",
    "SESSION_SUBMITTED",
    "SESSION_EXPIRED_SUBMITTED",
    "TERMINAL_SESSION_STATUSES",
    "EXAM_ACTIVE",
    "EXAM_INACTIVE",
    "DEFAULT_PASSING_SCORE",
]
