"""Database maintenance helpers to keep older deployments compatible."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

ACTIVE_SESSION_INDEX = "uq_exam_sessions_active"


def ensure_session_version_column(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Ensure ``exam_sessions.version`` exists.

    Databases created before answer writes were versioned lack the column the
    answer store bumps on every write. Add it in place with a zero default so
    existing sessions keep working.
    """

    inspector = inspect(engine)
    tables: Iterable[str] = inspector.get_table_names()
    if "exam_sessions" not in tables:
        return

    columns = {col["name"] for col in inspector.get_columns("exam_sessions")}
    if "version" in columns:
        return

    logger = logger or logging.getLogger(__name__)
    logger.warning("Missing exam_sessions.version column detected; applying schema patch.")

    try:
        with engine.begin() as connection:
            connection.execute(
                text("ALTER TABLE exam_sessions ADD COLUMN version INTEGER NOT NULL DEFAULT 0")
            )
    except SQLAlchemyError:
        logger.exception("Failed to add version column to exam_sessions")
        raise


def ensure_active_session_index(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Create the partial unique index behind the one-open-session rule.

    The index is skipped, with a warning, while older data still holds more
    than one open session for the same student and exam.
    """

    inspector = inspect(engine)
    if "exam_sessions" not in inspector.get_table_names():
        return

    existing = {index["name"] for index in inspector.get_indexes("exam_sessions")}
    if ACTIVE_SESSION_INDEX in existing:
        return

    logger = logger or logging.getLogger(__name__)
    if engine.dialect.name not in {"sqlite", "postgresql"}:
        logger.warning(
            "Partial indexes unsupported on %s; one-open-session rule is enforced in process only.",
            engine.dialect.name,
        )
        return

    logger.warning("Missing %s index detected; applying schema patch.", ACTIVE_SESSION_INDEX)
    try:
        with engine.begin() as connection:
            duplicates = connection.execute(
                text(
                    "SELECT COUNT(*) FROM ("
                    "SELECT student_id, exam_id FROM exam_sessions "
                    "WHERE status = 'IN_PROGRESS' "
                    "GROUP BY student_id, exam_id HAVING COUNT(*) > 1) dup"
                )
            ).scalar_one()
            if duplicates:
                logger.warning(
                    "%d student/exam pairs hold several open sessions; %s not created.",
                    duplicates,
                    ACTIVE_SESSION_INDEX,
                )
                return
            connection.execute(
                text(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_SESSION_INDEX} "
                    "ON exam_sessions (student_id, exam_id) WHERE status = 'IN_PROGRESS'"
                )
            )
    except SQLAlchemyError:
        logger.exception("Failed to create %s index", ACTIVE_SESSION_INDEX)
        raise


def ensure_database_schema(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Run every maintenance step needed for the current models."""

    ensure_session_version_column(engine, logger)
    ensure_active_session_index(engine, logger)
