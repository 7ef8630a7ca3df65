import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType

from .logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Work checks ``cancelled`` between units; nothing is interrupted mid-unit.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._event = threading.Event()
        self._start_time = time.monotonic()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation"""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.warning("Cancellation requested", reason=reason)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start_time

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called or the deadline passed"""
        if self._event.is_set():
            return True
        if self.timeout is not None and self.elapsed > self.timeout:
            self.cancel(f"timed out after {self.elapsed:.2f}s")
            return True
        return False

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; True if cancelled meanwhile"""
        self._event.wait(seconds)
        return self.cancelled

    @property
    def reason(self) -> str | None:
        return self._reason


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[CancellationToken]:
    """Turn SIGINT into a cancellation request for the duration of the block.

    Only the main thread may install signal handlers; elsewhere the token is
    yielded unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        token.cancel("interrupted")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
