"""Exclusive advisory locking of a directory."""

from __future__ import annotations

import contextlib
import logging
import os
from typing import Iterator

__all__ = ["dir_lock"]

_log = logging.getLogger(__name__)


@contextlib.contextmanager
def _posix_lock(directory: str) -> Iterator[None]:
    import fcntl

    fd = os.open(directory, os.O_RDONLY)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            raise OSError(exc.errno, f'failed to lock "{directory}": {exc.strerror}') from exc
        try:
            yield
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            except OSError:
                _log.exception('failed to unlock "%s"', directory)
    finally:
        os.close(fd)


@contextlib.contextmanager
def _windows_lock(directory: str) -> Iterator[None]:
    import msvcrt

    fd = os.open(directory + ".lock", os.O_CREAT | os.O_RDWR, 0o644)
    try:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError as exc:
            raise OSError(exc.errno, f'failed to lock "{directory}": {exc.strerror}') from exc
        try:
            yield
        finally:
            try:
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            except OSError:
                _log.exception('failed to unlock "%s"', directory)
    finally:
        os.close(fd)


@contextlib.contextmanager
def dir_lock(directory: str | os.PathLike[str]) -> Iterator[None]:
    """Hold an exclusive lock on ``directory`` for the duration of the block."""
    path = os.fspath(directory)
    lock = _windows_lock if os.name == "nt" else _posix_lock
    with lock(path):
        yield