from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from exam_engine import create_app, db
from exam_engine.config import TestConfig
from exam_engine.models import (
    EXAM_ACTIVE,
    EXAM_INACTIVE,
    Exam,
    ExamQuestion,
    Question,
    Student,
)
from exam_engine.services import clock


class FrozenClock:
    """Stand-in for ``clock.utcnow`` that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@dataclass
class SeededIds:
    alice: int
    bob: int
    timed_exam: int
    untimed_exam: int
    inactive_exam: int
    timed_questions: list[int]
    untimed_questions: list[int]


def seed_exams() -> SeededIds:
    alice = Student(name="Alice", email="alice@example.com")
    alice.set_password("password123")
    bob = Student(name="Bob", email="bob@example.com")
    bob.set_password("password123")

    # correct indices for the timed exam: [1, 0, 2, 1]
    timed_questions = [
        Question(header="Q1", alternatives=["a", "b", "c", "d"], correct_answer_index=1),
        Question(header="Q2", alternatives=["a", "b", "c", "d"], correct_answer_index=0),
        Question(header="Q3", alternatives=["a", "b", "c", "d"], correct_answer_index=2),
        Question(header="Q4", alternatives=["a", "b", "c", "d"], correct_answer_index=1),
    ]
    untimed_questions = [
        Question(header="U1", alternatives=["yes", "no"], correct_answer_index=0),
        Question(header="U2", alternatives=["yes", "no", "maybe"], correct_answer_index=2),
    ]
    timed = Exam(title="Timed", time_limit_minutes=1, passing_score=60, status=EXAM_ACTIVE)
    untimed = Exam(title="Untimed", time_limit_minutes=None, passing_score=50, status=EXAM_ACTIVE)
    inactive = Exam(title="Closed", time_limit_minutes=30, passing_score=60, status=EXAM_INACTIVE)

    db.session.add_all([alice, bob, timed, untimed, inactive])
    db.session.add_all(timed_questions + untimed_questions)
    db.session.flush()

    for position, question in enumerate(timed_questions, start=1):
        db.session.add(ExamQuestion(exam_id=timed.id, question_id=question.id, position=position))
    for position, question in enumerate(untimed_questions, start=1):
        db.session.add(ExamQuestion(exam_id=untimed.id, question_id=question.id, position=position))
    db.session.add(
        ExamQuestion(exam_id=inactive.id, question_id=timed_questions[0].id, position=1)
    )
    db.session.commit()

    return SeededIds(
        alice=alice.id,
        bob=bob.id,
        timed_exam=timed.id,
        untimed_exam=untimed.id,
        inactive_exam=inactive.id,
        timed_questions=[question.id for question in timed_questions],
        untimed_questions=[question.id for question in untimed_questions],
    )


@pytest.fixture
def frozen_clock(monkeypatch):
    frozen = FrozenClock(datetime(2024, 3, 1, 9, 0, 0))
    monkeypatch.setattr(clock, "utcnow", frozen)
    return frozen


@pytest.fixture
def app_context():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def seeded(app_context) -> SeededIds:
    return seed_exams()
