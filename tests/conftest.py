import pytest

from docflow.budget.clock import ManualClock
from docflow.config.settings import Settings


@pytest.fixture()
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def test_settings() -> Settings:
    """Settings tuned for fast, deterministic jobs: no spacing, no jitter."""
    return Settings(
        max_chunk_words=100,
        min_chunk_words=10,
        max_retries=3,
        base_backoff_ms=1000,
        max_backoff_ms=8000,
        backoff_jitter_ratio=0.0,
        provider_requests_per_window=100,
        window_ms=60000,
        min_inter_request_spacing_ms=0,
        max_concurrent_jobs=2,
    )
