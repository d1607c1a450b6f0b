import random
from dataclasses import dataclass, field

from docflow.config.settings import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Retry eligibility and exponential backoff for failed attempts.

    ``max_retries`` bounds the total number of attempts per chunk. Jitter is a
    fraction of the raw delay drawn from ``[0, jitter_ratio)`` and applied
    before the cap, so with ``jitter_ratio <= 1`` delays never shrink from one
    attempt to the next.
    """

    max_retries: int = 3
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    jitter_ratio: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise ValueError("backoff delays must not be negative")
        if self.base_backoff_seconds > self.max_backoff_seconds:
            raise ValueError("base_backoff_seconds must not exceed max_backoff_seconds")
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0 and 1")

    @classmethod
    def from_settings(cls, settings: Settings, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_backoff_seconds=settings.base_backoff_ms / 1000,
            max_backoff_seconds=settings.max_backoff_ms / 1000,
            jitter_ratio=settings.backoff_jitter_ratio,
            rng=rng or random.Random(),
        )

    def should_retry(self, attempt_number: int) -> bool:
        """Whether a transient failure on ``attempt_number`` may be retried."""
        return attempt_number < self.max_retries

    def backoff_seconds(
        self,
        attempt_number: int,
        retry_after: float | None = None,
        previous_delay: float = 0.0,
    ) -> float:
        """Delay before the attempt following ``attempt_number`` (1-based).

        A provider-supplied ``retry_after`` lengthens the delay but never past
        the cap. ``previous_delay`` is the delay used before the failed
        attempt; the result is never shorter than it, so a long
        ``retry_after`` carries over to later retries of the same chunk.
        """
        raw = self.base_backoff_seconds * 2 ** (attempt_number - 1)
        jitter = self.rng.uniform(0.0, self.jitter_ratio) if self.jitter_ratio else 0.0
        delay = max(raw * (1 + jitter), previous_delay)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_backoff_seconds)
