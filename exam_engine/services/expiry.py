"""Server-side deadline enforcement.

Two paths close expired sessions: :func:`ensure_session_active` runs on every
request that touches a session, and :class:`ExpirySweeper` periodically closes
sessions nobody is touching any more. Both go through
:func:`~exam_engine.services.finalizer.finalise_session`.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from flask import Flask

from .. import db
from ..models import SESSION_IN_PROGRESS, ExamSession
from . import clock
from .finalizer import finalise_session

logger = logging.getLogger(__name__)


def is_expired(session: ExamSession, now: datetime | None = None) -> bool:
    if session.deadline is None:
        return False
    return (now or clock.utcnow()) >= session.deadline


def seconds_remaining(session: ExamSession, now: datetime | None = None) -> int | None:
    """Whole seconds until the deadline, ``None`` for untimed sessions."""

    if session.deadline is None:
        return None
    if session.status != SESSION_IN_PROGRESS:
        return 0
    remaining = (session.deadline - (now or clock.utcnow())).total_seconds()
    return max(0, int(remaining))


def ensure_session_active(session: ExamSession, now: datetime | None = None) -> ExamSession:
    """Auto-submit ``session`` if its deadline has passed and return a fresh copy.

    Callers that go on to compare against the deadline pass their own ``now``
    so both checks see the same instant.
    """

    if session.status == SESSION_IN_PROGRESS and is_expired(session, now):
        finalise_session(session.id, auto_submitted=True)
        session = db.session.get(ExamSession, session.id, populate_existing=True)
    return session


def sweep_expired_sessions(now: datetime | None = None) -> int:
    """Finalise every timed session past its deadline; returns how many closed."""

    now = now or clock.utcnow()
    expired_ids = [
        session_id
        for (session_id,) in db.session.query(ExamSession.id)
        .filter(
            ExamSession.status == SESSION_IN_PROGRESS,
            ExamSession.deadline.isnot(None),
            ExamSession.deadline <= now,
        )
        .order_by(ExamSession.deadline.asc())
    ]

    closed = 0
    for session_id in expired_ids:
        try:
            outcome = finalise_session(session_id, auto_submitted=True)
        except Exception:
            db.session.rollback()
            logger.exception("Failed to auto-submit expired exam session %s", session_id)
            continue
        if outcome.transitioned:
            closed += 1
    return closed


class ExpirySweeper:
    """Daemon thread that runs :func:`sweep_expired_sessions` on an interval."""

    def __init__(self, app: Flask, *, interval: float = 5.0) -> None:
        self.app = app
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="exam-expiry-sweeper", daemon=True
        )
        self._thread.start()
        self.app.logger.info("Expiry sweeper started (every %.1fs)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        with self.app.app_context():
            try:
                return sweep_expired_sessions()
            finally:
                db.session.remove()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                closed = self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed")
                continue
            if closed:
                self.app.logger.info("Auto-submitted %d expired exam session(s)", closed)
