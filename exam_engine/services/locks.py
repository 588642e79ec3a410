"""Keyed in-process locks so work on one session never blocks another."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class _KeyedLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        # holders plus waiters; the entry is dropped when this reaches zero
        self.users = 0


_registry_lock = threading.Lock()
_locks: dict[Hashable, _KeyedLock] = {}


@contextmanager
def _hold(key: Hashable) -> Iterator[None]:
    with _registry_lock:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _KeyedLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del _locks[key]


@contextmanager
def session_lock(session_id: int) -> Iterator[None]:
    with _hold(("session", session_id)):
        yield


@contextmanager
def start_lock(student_id: int, exam_id: int) -> Iterator[None]:
    with _hold(("start", student_id, exam_id)):
        yield
