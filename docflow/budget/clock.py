import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Time source used for pacing, backoff and latency measurement."""

    @abstractmethod
    def monotonic(self) -> float:
        """Return the current time in seconds."""

    @abstractmethod
    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> None:
        """Suspend the calling thread for ``seconds``.

        Returns early once ``interrupt`` is set.
        """


class SystemClock(Clock):
    """Wall-clock implementation backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> None:
        if seconds <= 0:
            return
        if interrupt is not None:
            interrupt.wait(seconds)
        else:
            time.sleep(seconds)


class ManualClock(Clock):
    """Simulated clock: sleeping advances time instantly.

    Lets whole jobs run against realistic pacing (minutes of spacing and
    backoff) without waiting in real time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds
