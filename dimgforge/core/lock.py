"""Process-wide advisory lock over the build directory.

One ``BuildLock`` is acquired when a build starts and held until it ends,
so two processes never mutate the same build cache and temp tree.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from types import TracebackType

from dimgforge.core.errors import DimgforgeError

logger = logging.getLogger(__name__)


class BuildLockTimeout(DimgforgeError):
    """Raised when the build lock cannot be acquired in time."""


class BuildLock:
    """Exclusive ``flock`` on a lock file.

    Parameters
    ----------
    path:
        Lock file; created if missing.
    timeout:
        Seconds to wait for the lock.  ``0`` waits forever.
    """

    _poll_interval = 0.2

    def __init__(self, path: Path, timeout: float = 0) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            if self.timeout <= 0:
                fcntl.flock(fd, fcntl.LOCK_EX)
            else:
                self._acquire_with_timeout(fd)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd
        logger.debug("Acquired build lock %s", self.path)

    def _acquire_with_timeout(self, fd: int) -> None:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise BuildLockTimeout(
                        f"Could not acquire build lock {self.path} "
                        f"within {self.timeout}s"
                    ) from None
                time.sleep(self._poll_interval)

    def release(self) -> None:
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.debug("Released build lock %s", self.path)

    def __enter__(self) -> BuildLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
