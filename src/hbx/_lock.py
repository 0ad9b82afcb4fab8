"""Advisory store lock: one writer per store home across threads and processes."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager

logger = logging.getLogger("hbx.lock")

_thread_locks: dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock(lock_path: str) -> threading.Lock:
    key = os.path.normcase(os.path.realpath(lock_path))
    with _thread_locks_guard:
        return _thread_locks.setdefault(key, threading.Lock())


try:
    import fcntl

    def _acquire(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _release(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

    _OPEN_FLAGS = os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0)

except ImportError:
    import msvcrt

    def _acquire(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _release(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

    _OPEN_FLAGS = os.O_CREAT | os.O_RDWR


@contextmanager
def store_lock(lock_path: str | os.PathLike[str]):
    """Hold the lock file at *lock_path* exclusively.

    Not reentrant: code already holding the lock must call the unlocked
    helpers.
    """
    lock_path = os.fspath(lock_path)
    tlock = _thread_lock(lock_path)
    with tlock:
        fd = os.open(lock_path, _OPEN_FLAGS)
        os.set_inheritable(fd, False)
        try:
            _acquire(fd)
            logger.debug("locked %s", lock_path)
            try:
                yield
            finally:
                _release(fd)
        finally:
            os.close(fd)
