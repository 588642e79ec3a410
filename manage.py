from __future__ import annotations

from exam_engine import create_app, db
from exam_engine.models import (
    EXAM_ACTIVE,
    Exam,
    ExamQuestion,
    Question,
    Student,
)
from exam_engine.services import sweep_expired_sessions

app = create_app()

QUESTION_BANK = (
    ("Which data structure uses FIFO ordering?", ("Stack", "Queue", "Tree", "Graph"), 1),
    ("What is 7 x 8?", ("56", "54", "48", "64"), 0),
    ("Which planet is closest to the sun?", ("Venus", "Earth", "Mercury", "Mars"), 2),
    ("H2O is commonly known as?", ("Salt", "Water", "Oxygen", "Hydrogen"), 1),
    ("How many sides does a hexagon have?", ("5", "8", "7", "6"), 3),
    ("Which gas do plants absorb?", ("CO2", "O2", "N2", "He"), 0),
)


@app.cli.command("init-db")
def init_db() -> None:
    """Initialise the database schema."""
    db.create_all()
    app.logger.info("Database tables created")


@app.cli.command("seed-demo")
def seed_demo() -> None:
    """Seed the database with a demo student and two exams."""
    db.drop_all()
    db.create_all()

    student = Student(name="Jamie Lee", email="jamie@example.com")
    student.set_password("password123")

    questions = [
        Question(
            header=header,
            alternatives=list(alternatives),
            correct_answer_index=correct,
            educational_indicator="general knowledge",
        )
        for header, alternatives, correct in QUESTION_BANK
    ]

    timed = Exam(
        title="Timed diagnostic",
        description="Four questions, ten minutes.",
        time_limit_minutes=10,
        passing_score=60,
        status=EXAM_ACTIVE,
    )
    untimed = Exam(
        title="Untimed practice",
        description="Practice at your own pace.",
        time_limit_minutes=None,
        passing_score=50,
        status=EXAM_ACTIVE,
    )

    db.session.add(student)
    db.session.add_all(questions)
    db.session.add_all([timed, untimed])
    db.session.flush()

    links = [
        ExamQuestion(exam_id=timed.id, question_id=question.id, position=position)
        for position, question in enumerate(questions[:4], start=1)
    ]
    links.extend(
        ExamQuestion(exam_id=untimed.id, question_id=question.id, position=position)
        for position, question in enumerate(questions[2:], start=1)
    )
    db.session.add_all(links)

    token = student.issue_token(ttl_days=app.config["EXAM_TOKEN_TTL_DAYS"])
    db.session.commit()
    app.logger.info("Demo data created for %s", student.email)
    print(f"Bearer token for {student.email}: {token.token}")


@app.cli.command("sweep-expired")
def sweep_expired() -> None:
    """Auto-submit every timed session whose deadline has passed."""
    closed = sweep_expired_sessions()
    print(f"Auto-submitted {closed} expired session(s)")
