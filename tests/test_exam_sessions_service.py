from __future__ import annotations

from datetime import timedelta

import pytest

from exam_engine import db
from exam_engine.models import (
    SESSION_EXPIRED_SUBMITTED,
    SESSION_IN_PROGRESS,
    SESSION_SUBMITTED,
    Exam,
    ExamResult,
    ExamSession,
    Question,
    SessionAnswer,
    Student,
)
from exam_engine.services import (
    ExamAnswerRangeError,
    ExamDeadlinePassedError,
    ExamDefinitionNotFoundError,
    ExamQuestionScopeError,
    ExamSessionClosedError,
    ExamSessionForbiddenError,
    ExamSessionNotFoundError,
    ExamUnavailableError,
    get_result,
    get_snapshot,
    list_available_exams,
    list_results,
    save_answer,
    start_session,
    submit_session,
    sweep_expired_sessions,
)


def test_start_session_creates_timed_session(seeded, frozen_clock):
    started = start_session(seeded.alice, seeded.timed_exam)
    session = started.session

    assert not started.resumed
    assert session.status == SESSION_IN_PROGRESS
    assert session.attempt_number == 1
    assert session.started_at == frozen_clock.now
    assert (session.deadline - session.started_at).total_seconds() == 60
    assert session.question_ids == seeded.timed_questions


def test_start_session_is_idempotent_while_in_progress(seeded, frozen_clock):
    first = start_session(seeded.alice, seeded.timed_exam)
    frozen_clock.advance(20)
    second = start_session(seeded.alice, seeded.timed_exam)

    assert second.resumed
    assert second.session.id == first.session.id
    assert second.session.deadline == first.session.deadline
    assert ExamSession.query.filter_by(student_id=seeded.alice).count() == 1


def test_untimed_session_has_no_deadline(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.untimed_exam).session
    assert session.deadline is None

    view = get_snapshot(session.id, seeded.alice)
    assert view.seconds_remaining is None


def test_start_session_unknown_and_inactive_exam(seeded):
    with pytest.raises(ExamDefinitionNotFoundError):
        start_session(seeded.alice, 9999)
    with pytest.raises(ExamUnavailableError):
        start_session(seeded.alice, seeded.inactive_exam)


def test_attempt_number_counts_finished_sessions(seeded, frozen_clock):
    first = start_session(seeded.alice, seeded.untimed_exam).session
    submit_session(first.id, seeded.alice)

    second = start_session(seeded.alice, seeded.untimed_exam)
    assert not second.resumed
    assert second.session.id != first.id
    assert second.session.attempt_number == 2


def test_expired_session_is_closed_before_new_attempt(seeded, frozen_clock):
    first = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.advance(61)

    second = start_session(seeded.alice, seeded.timed_exam)

    assert not second.resumed
    assert second.session.attempt_number == 2
    closed = db.session.get(ExamSession, first.id)
    assert closed.status == SESSION_EXPIRED_SUBMITTED
    assert ExamResult.query.filter_by(session_id=first.id).one().auto_submitted


def test_snapshot_hides_answer_key_and_recomputes_remaining(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    save_answer(session.id, seeded.timed_questions[0], 3, requester_id=seeded.alice)

    view = get_snapshot(session.id, seeded.alice)
    assert view.seconds_remaining == 60
    assert view.answers == {seeded.timed_questions[0]: 3}
    assert all(question.correct_answer_index is None for question in view.questions)
    assert [question.position for question in view.questions] == [1, 2, 3, 4]

    frozen_clock.advance(45)
    assert get_snapshot(session.id, seeded.alice).seconds_remaining == 15


def test_snapshot_after_submit_reveals_key_and_result(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    submit_session(session.id, seeded.alice)

    view = get_snapshot(session.id, seeded.alice)
    assert view.status == SESSION_SUBMITTED
    assert [question.correct_answer_index for question in view.questions] == [1, 0, 2, 1]
    assert view.result is not None and view.result.total_score == 0
    assert view.seconds_remaining == 0


def test_snapshot_and_submit_reject_other_students(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.advance(90)

    with pytest.raises(ExamSessionForbiddenError):
        get_snapshot(session.id, seeded.bob)
    with pytest.raises(ExamSessionForbiddenError):
        submit_session(session.id, seeded.bob)
    with pytest.raises(ExamSessionForbiddenError):
        save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.bob)

    # no lazy expiry ran on behalf of the intruder
    assert db.session.get(ExamSession, session.id).status == SESSION_IN_PROGRESS
    assert ExamResult.query.count() == 0


def test_unknown_session(seeded):
    with pytest.raises(ExamSessionNotFoundError):
        get_snapshot(12345, seeded.alice)
    with pytest.raises(ExamSessionNotFoundError):
        submit_session(12345, seeded.alice)


def test_save_answer_overwrites_by_question(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    question_id = seeded.timed_questions[1]

    save_answer(session.id, question_id, 2, requester_id=seeded.alice)
    save_answer(session.id, question_id, 0, requester_id=seeded.alice, time_spent_seconds=12)
    save_answer(session.id, question_id, 0, requester_id=seeded.alice)

    rows = SessionAnswer.query.filter_by(session_id=session.id).all()
    assert len(rows) == 1
    assert rows[0].selected_index == 0
    assert rows[0].time_spent_seconds == 12


def test_save_answer_rejects_foreign_question_and_bad_index(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session

    with pytest.raises(ExamQuestionScopeError):
        save_answer(session.id, seeded.untimed_questions[0], 0, requester_id=seeded.alice)
    with pytest.raises(ExamAnswerRangeError):
        save_answer(session.id, seeded.timed_questions[0], 4, requester_id=seeded.alice)
    with pytest.raises(ExamAnswerRangeError):
        save_answer(session.id, seeded.timed_questions[0], -1, requester_id=seeded.alice)


def test_save_answer_rejected_after_submit(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.untimed_exam).session
    submit_session(session.id, seeded.alice)

    with pytest.raises(ExamSessionClosedError) as excinfo:
        save_answer(session.id, seeded.untimed_questions[0], 0, requester_id=seeded.alice)
    assert not isinstance(excinfo.value, ExamDeadlinePassedError)


def test_no_answer_accepted_at_or_after_deadline(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    for index, question_id in enumerate(seeded.timed_questions):
        save_answer(session.id, question_id, index % 4, requester_id=seeded.alice)

    frozen_clock.advance(60)
    with pytest.raises(ExamDeadlinePassedError):
        save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.alice)

    # the lazy check closed the session on the way out
    refreshed = db.session.get(ExamSession, session.id)
    assert refreshed.status == SESSION_EXPIRED_SUBMITTED
    with pytest.raises(ExamDeadlinePassedError):
        save_answer(session.id, seeded.timed_questions[1], 0, requester_id=seeded.alice)


def test_deadline_checked_from_timestamp_even_if_status_open(seeded, frozen_clock, monkeypatch):
    from exam_engine.services import answer_store

    session = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.advance(75)
    # simulate the expiry controller not having run yet
    monkeypatch.setattr(answer_store, "ensure_session_active", lambda session, now=None: session)

    with pytest.raises(ExamDeadlinePassedError):
        save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.alice)
    assert SessionAnswer.query.count() == 0


def test_scoring_example_from_four_question_exam(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    q1, q2, q3, _q4 = seeded.timed_questions
    save_answer(session.id, q1, 1, requester_id=seeded.alice)
    save_answer(session.id, q2, 1, requester_id=seeded.alice)
    save_answer(session.id, q3, 2, requester_id=seeded.alice)

    frozen_clock.advance(30)
    result = submit_session(session.id, seeded.alice)

    assert result.total_questions == 4
    assert result.total_score == 2
    assert result.percentage == 50
    assert result.passed is False
    assert result.auto_submitted is False
    assert result.time_spent_seconds == 30
    assert db.session.get(ExamSession, session.id).status == SESSION_SUBMITTED


def test_resubmit_returns_same_result(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.untimed_exam).session
    save_answer(session.id, seeded.untimed_questions[0], 0, requester_id=seeded.alice)

    first = submit_session(session.id, seeded.alice)
    frozen_clock.advance(300)
    second = submit_session(session.id, seeded.alice)

    assert first.id == second.id
    assert second.total_score == 1
    assert second.percentage == 50
    assert second.passed is True
    assert ExamResult.query.count() == 1


def test_auto_submit_after_deadline_clamps_time_spent(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.advance(10)
    save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.alice)

    frozen_clock.advance(80)
    assert sweep_expired_sessions() == 1

    result = ExamResult.query.filter_by(session_id=session.id).one()
    assert result.auto_submitted is True
    assert result.time_spent_seconds == 60
    assert result.total_score == 1
    assert result.percentage == 25
    assert db.session.get(ExamSession, session.id).status == SESSION_EXPIRED_SUBMITTED

    # a late explicit submit gets the sweep's result
    assert submit_session(session.id, seeded.alice).id == result.id
    assert sweep_expired_sessions() == 0


def test_submit_after_deadline_is_recorded_as_auto_submission(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.advance(600)

    result = submit_session(session.id, seeded.alice)

    assert result.auto_submitted is True
    assert result.time_spent_seconds == 60
    assert db.session.get(ExamSession, session.id).status == SESSION_EXPIRED_SUBMITTED


def test_sweep_ignores_untimed_and_open_sessions(seeded, frozen_clock):
    untimed = start_session(seeded.alice, seeded.untimed_exam).session
    timed = start_session(seeded.bob, seeded.timed_exam).session

    frozen_clock.advance(30)
    assert sweep_expired_sessions() == 0

    frozen_clock.advance(24 * 3600)
    assert sweep_expired_sessions() == 1
    assert db.session.get(ExamSession, untimed.id).status == SESSION_IN_PROGRESS
    assert db.session.get(ExamSession, timed.id).status == SESSION_EXPIRED_SUBMITTED


def test_open_session_ignores_later_definition_edits(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session

    exam = db.session.get(Exam, seeded.timed_exam)
    exam.time_limit_minutes = 90
    exam.questions.pop()
    question = db.session.get(Question, seeded.timed_questions[0])
    question.correct_answer_index = 3
    db.session.commit()

    save_answer(session.id, seeded.timed_questions[3], 1, requester_id=seeded.alice)
    save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.alice)
    view = get_snapshot(session.id, seeded.alice)
    assert len(view.questions) == 4
    assert view.seconds_remaining == 60

    result = submit_session(session.id, seeded.alice)
    assert result.total_questions == 4
    assert result.total_score == 2


def test_get_result_requires_finished_session(seeded, frozen_clock):
    session = start_session(seeded.alice, seeded.timed_exam).session
    with pytest.raises(ExamSessionNotFoundError):
        get_result(session.id, seeded.alice)

    frozen_clock.advance(61)
    result = get_result(session.id, seeded.alice)
    assert result.auto_submitted is True


def test_available_exams_and_results_listing(seeded, frozen_clock):
    in_progress = start_session(seeded.alice, seeded.timed_exam).session
    finished = start_session(seeded.alice, seeded.untimed_exam).session
    submit_session(finished.id, seeded.alice)

    available = list_available_exams(db.session.get(Student, seeded.alice))
    assert [(item.exam.id, item.in_progress_session_id) for item in available] == [
        (seeded.timed_exam, in_progress.id)
    ]

    results = list_results(seeded.alice)
    assert [result.session_id for result in results] == [finished.id]
    assert list_results(seeded.bob) == []


def test_lock_registry_is_emptied_after_use(seeded, frozen_clock):
    from exam_engine.services import locks

    before = len(locks._locks)
    for _ in range(5):
        session = start_session(seeded.alice, seeded.untimed_exam).session
        save_answer(session.id, seeded.untimed_questions[0], 0, requester_id=seeded.alice)
        submit_session(session.id, seeded.alice)

    assert len(locks._locks) == before


def test_start_after_losing_race_to_expired_session(seeded, frozen_clock, monkeypatch):
    from exam_engine.services import session_manager

    first_id = start_session(seeded.alice, seeded.timed_exam).session.id
    frozen_clock.advance(90)

    real_find = session_manager._find_in_progress
    lookups = []

    def find_after_other_process(student_id, exam_id):
        lookups.append(exam_id)
        # the other process's session is not visible to the first lookup
        if len(lookups) == 1:
            return None
        return real_find(student_id, exam_id)

    monkeypatch.setattr(session_manager, "_find_in_progress", find_after_other_process)

    started = start_session(seeded.alice, seeded.timed_exam)
    assert started.resumed is False
    assert started.session.id != first_id
    assert started.session.attempt_number == 2
    assert started.session.status == SESSION_IN_PROGRESS

    first = db.session.get(ExamSession, first_id, populate_existing=True)
    assert first.status == SESSION_EXPIRED_SUBMITTED
    assert first.result.auto_submitted is True


def test_save_answer_reads_the_clock_once(seeded, frozen_clock, monkeypatch):
    from exam_engine.services import clock

    session = start_session(seeded.alice, seeded.timed_exam).session
    frozen_clock.now = session.deadline - timedelta(seconds=1)
    readings = []

    def ticking_clock():
        # every later reading lands past the deadline
        readings.append(frozen_clock.now)
        current = frozen_clock.now
        frozen_clock.advance(2)
        return current

    monkeypatch.setattr(clock, "utcnow", ticking_clock)

    save_answer(session.id, seeded.timed_questions[0], 1, requester_id=seeded.alice)

    assert len(readings) == 1
    assert SessionAnswer.query.filter_by(session_id=session.id).one().selected_index == 1
    assert db.session.get(ExamSession, session.id, populate_existing=True).status == (
        SESSION_IN_PROGRESS
    )
