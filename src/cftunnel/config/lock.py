"""Advisory file lock serializing reconciliation cycles."""

import os
import sys
import time
from pathlib import Path
from types import TracebackType
from typing import IO, Literal

from ..common.exceptions import ConfigLockedError
from ..common.logging import get_logger

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = get_logger(__name__)


def _try_lock(handle: IO[str]) -> bool:
    try:
        if sys.platform == "win32":
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle: IO[str]) -> None:
    if sys.platform == "win32":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileLock:
    """Exclusive advisory lock on a sidecar ``.lock`` file.

    Acquisition polls without blocking and gives up after ``timeout`` seconds
    with ConfigLockedError. The lock is not re-entrant.
    """

    def __init__(self, path: str | Path, timeout: float = 10.0, poll_interval: float = 0.1):
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: IO[str] | None = None

    @property
    def is_held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Acquire the lock.

        Raises:
            ConfigLockedError: If already held by this object or the wait expires
        """
        if self._handle is not None:
            raise ConfigLockedError(
                f"Lock already held: {self.path}", path=str(self.path)
            )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        deadline = time.monotonic() + self.timeout
        while not _try_lock(handle):
            if time.monotonic() >= deadline:
                handle.close()
                logger.warning("Lock wait expired", path=str(self.path), timeout=self.timeout)
                raise ConfigLockedError(
                    f"Another cftunnel process holds {self.path} "
                    f"(waited {self.timeout:.1f}s)",
                    path=str(self.path),
                )
            time.sleep(self.poll_interval)

        # Holder pid is informational only
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle
        logger.debug("Lock acquired", path=str(self.path))

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            _unlock(self._handle)
        finally:
            self._handle.close()
            self._handle = None
            logger.debug("Lock released", path=str(self.path))

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.release()
        return False
