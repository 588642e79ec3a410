"""Single time source for the exam engine.

Timestamps are naive UTC to match how the models store ``DateTime`` columns.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
