"""Rolling-window request budget for a single provider."""

import itertools
import math
import threading
from collections import deque
from dataclasses import dataclass

from docflow.budget.clock import Clock
from docflow.config.settings import Settings
from docflow.logging.logger import Log

# Waits shorter than this are treated as zero so float rounding cannot stall
# a caller in an endless series of tiny sleeps.
_WAIT_EPSILON = 1e-6
_TOKENS_PER_WORD = 4 / 3


def estimate_tokens(text: str) -> int:
    """Rough token count for budgeting: about four tokens per three words."""
    return math.ceil(len(text.split()) * _TOKENS_PER_WORD)


@dataclass(frozen=True)
class BudgetLimits:
    """Throughput allowance for one provider."""

    requests_per_window: int
    window_seconds: float
    min_spacing_seconds: float = 0.0
    tokens_per_window: int | None = None

    def __post_init__(self) -> None:
        if self.requests_per_window <= 0:
            raise ValueError("requests_per_window must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.min_spacing_seconds < 0:
            raise ValueError("min_spacing_seconds must not be negative")
        if self.tokens_per_window is not None and self.tokens_per_window <= 0:
            raise ValueError("tokens_per_window must be positive when set")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BudgetLimits":
        return cls(
            requests_per_window=settings.provider_requests_per_window,
            window_seconds=settings.window_ms / 1000,
            min_spacing_seconds=settings.min_inter_request_spacing_ms / 1000,
            tokens_per_window=settings.provider_tokens_per_window,
        )


@dataclass(frozen=True)
class BudgetGrant:
    """A reservation handed out by ``ProviderBudget.try_acquire``."""

    reservation_id: int
    provider_id: str
    granted_at: float
    cost: int


@dataclass(frozen=True)
class BudgetDecision:
    """Outcome of ``try_acquire``: a grant, or the time to wait before retrying."""

    grant: BudgetGrant | None = None
    wait_seconds: float = 0.0

    @property
    def granted(self) -> bool:
        return self.grant is not None


@dataclass(frozen=True)
class BudgetSnapshot:
    remaining_requests: int
    remaining_tokens: int | None
    window_started_at: float
    last_grant_at: float | None


@dataclass
class _Reservation:
    reservation_id: int
    granted_at: float
    cost: int


class ProviderBudget:
    """Token-bucket-like allowance over a rolling time window.

    At most ``requests_per_window`` grants (and, when configured,
    ``tokens_per_window`` tokens) fall inside any window of
    ``window_seconds``, and consecutive grants are at least
    ``min_spacing_seconds`` apart. Safe to share between threads.
    """

    def __init__(self, provider_id: str, limits: BudgetLimits, clock: Clock) -> None:
        self._provider_id = provider_id
        self._limits = limits
        self._clock = clock
        self._lock = threading.Lock()
        self._reservations: deque[_Reservation] = deque()
        self._last_grant_at: float | None = None
        self._ids = itertools.count(1)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def limits(self) -> BudgetLimits:
        return self._limits

    def try_acquire(self, cost: int = 0) -> BudgetDecision:
        """Reserve capacity for one request costing ``cost`` tokens.

        Returns a granted decision, or one carrying the minimum wait until
        capacity frees up. Never blocks.
        """
        with self._lock:
            now = self._clock.monotonic()
            self._evict(now)
            wait = max(
                self._spacing_wait(now),
                self._request_wait(now),
                self._token_wait(now, cost),
            )
            if wait > _WAIT_EPSILON:
                return BudgetDecision(wait_seconds=wait)

            reservation = _Reservation(
                reservation_id=next(self._ids), granted_at=now, cost=cost
            )
            self._reservations.append(reservation)
            self._last_grant_at = now
            return BudgetDecision(
                grant=BudgetGrant(
                    reservation_id=reservation.reservation_id,
                    provider_id=self._provider_id,
                    granted_at=now,
                    cost=cost,
                )
            )

    def release(self, grant: BudgetGrant, actual_cost: int) -> None:
        """Replace a grant's estimated token cost with what it actually used.

        The request slot itself stays consumed until it ages out of the window.
        """
        with self._lock:
            for reservation in self._reservations:
                if reservation.reservation_id == grant.reservation_id:
                    reservation.cost = max(0, actual_cost)
                    return
        Log.debug(
            f"Reservation {grant.reservation_id} for {self._provider_id} "
            "already left the window"
        )

    def reset(self) -> None:
        """Forget every reservation and the spacing reference point."""
        with self._lock:
            self._reservations.clear()
            self._last_grant_at = None

    def snapshot(self) -> BudgetSnapshot:
        with self._lock:
            now = self._clock.monotonic()
            self._evict(now)
            remaining_tokens = None
            if self._limits.tokens_per_window is not None:
                used = sum(r.cost for r in self._reservations)
                remaining_tokens = max(0, self._limits.tokens_per_window - used)
            return BudgetSnapshot(
                remaining_requests=self._limits.requests_per_window - len(self._reservations),
                remaining_tokens=remaining_tokens,
                window_started_at=(
                    self._reservations[0].granted_at if self._reservations else now
                ),
                last_grant_at=self._last_grant_at,
            )

    def _evict(self, now: float) -> None:
        window = self._limits.window_seconds
        while self._reservations and now - self._reservations[0].granted_at >= window:
            self._reservations.popleft()

    def _spacing_wait(self, now: float) -> float:
        if self._last_grant_at is None:
            return 0.0
        return self._last_grant_at + self._limits.min_spacing_seconds - now

    def _request_wait(self, now: float) -> float:
        if len(self._reservations) < self._limits.requests_per_window:
            return 0.0
        return self._reservations[0].granted_at + self._limits.window_seconds - now

    def _token_wait(self, now: float, cost: int) -> float:
        limit = self._limits.tokens_per_window
        if limit is None or not self._reservations:
            return 0.0
        used = sum(r.cost for r in self._reservations)
        if used + cost <= limit:
            return 0.0
        # Walk the window oldest-first until enough tokens have expired. A cost
        # above the whole limit waits for the window to drain completely.
        freed = 0
        for reservation in self._reservations:
            freed += reservation.cost
            if used - freed + cost <= limit:
                break
        return reservation.granted_at + self._limits.window_seconds - now
