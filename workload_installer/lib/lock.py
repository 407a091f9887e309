from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Optional

from ..errors import InstallLockError

logger = logging.getLogger(__name__)


class InstallRootLock:
    """Exclusive advisory lock serializing mutations of one install root.

    Other processes targeting the same root block (or time out) until the
    holder releases. Re-entrant for the owning object so nested mutating
    calls inside one operation do not deadlock. The kernel drops the lock
    when the holding process dies.
    """

    def __init__(self, path: Path, *, timeout_s: Optional[float] = None, poll_s: float = 0.1) -> None:
        self.path = path
        self.timeout_s = timeout_s
        self.poll_s = poll_s
        self._fd: Optional[int] = None
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        if self._depth > 0:
            self._depth += 1
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        deadline = None if self.timeout_s is None else time.monotonic() + self.timeout_s
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if deadline is not None and time.monotonic() >= deadline:
                        raise InstallLockError(
                            f"Timed out after {self.timeout_s}s waiting for install lock {self.path}"
                        )
                    time.sleep(self.poll_s)
        except BaseException:
            os.close(fd)
            raise

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd
        self._depth = 1
        logger.debug("Acquired install lock %s", self.path)

    def release(self) -> None:
        if self._depth == 0:
            raise InstallLockError(f"Install lock {self.path} is not held")
        self._depth -= 1
        if self._depth > 0:
            return
        fd, self._fd = self._fd, None
        if fd is None:
            raise InstallLockError(f"Install lock {self.path} has no open descriptor")
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released install lock %s", self.path)

    def __enter__(self) -> "InstallRootLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
