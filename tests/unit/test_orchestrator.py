"""Tests for the ChunkOrchestrator (sequential, budget-paced chunk processing)."""

import threading
from unittest.mock import MagicMock

from docflow.budget.clock import ManualClock
from docflow.budget.provider_budget import BudgetLimits, ProviderBudget
from docflow.chunking.models import Chunk
from docflow.orchestration.models import (
    AttemptOutcome,
    ChunkState,
    Document,
    FailureKind,
    OrchestrationJob,
)
from docflow.orchestration.orchestrator import ChunkOrchestrator
from docflow.orchestration.retry_policy import RetryPolicy
from docflow.providers.base import BaseProvider
from docflow.providers.exceptions import ProviderFatalError, ProviderTransientError
from docflow.providers.models import ModelParameters


def _make_orchestrator(
    clock: ManualClock,
    provider: MagicMock,
    *,
    requests: int = 100,
    spacing: float = 0.0,
    tokens: int | None = None,
    max_retries: int = 3,
    max_budget_wait: float = 600.0,
    call_grace: float = 5.0,
) -> tuple[ChunkOrchestrator, ProviderBudget]:
    budget = ProviderBudget(
        "example",
        BudgetLimits(
            requests_per_window=requests,
            window_seconds=60.0,
            min_spacing_seconds=spacing,
            tokens_per_window=tokens,
        ),
        clock,
    )
    policy = RetryPolicy(
        max_retries=max_retries,
        base_backoff_seconds=1.0,
        max_backoff_seconds=8.0,
        jitter_ratio=0.0,
    )
    orchestrator = ChunkOrchestrator(
        provider=provider,
        budget=budget,
        retry_policy=policy,
        clock=clock,
        max_budget_wait_seconds=max_budget_wait,
        call_timeout_grace_seconds=call_grace,
    )
    return orchestrator, budget


def _make_job(chunk_count: int) -> OrchestrationJob:
    chunks = [
        Chunk(index=i, text=" ".join(f"c{i}w{j}" for j in range(3)), word_count=3)
        for i in range(chunk_count)
    ]
    document = Document(
        id="doc-1",
        text="\n\n".join(c.text for c in chunks),
        provider_id="example",
        instructions="Rewrite formally",
        model_parameters=ModelParameters(model="test-model"),
    )
    return OrchestrationJob(id="job-1", document=document, chunks=chunks)


class _CancelOnSleepClock(ManualClock):
    """Requests cancellation of a job the first time anything sleeps."""

    def __init__(self, job: OrchestrationJob) -> None:
        super().__init__()
        self._job = job
        self.interrupts: list[threading.Event | None] = []

    def sleep(self, seconds: float, interrupt: threading.Event | None = None) -> None:
        self._job.request_cancel()
        self.interrupts.append(interrupt)
        super().sleep(seconds, interrupt)


def _make_provider(side_effect: object = None) -> MagicMock:
    provider = MagicMock(spec=BaseProvider)
    if side_effect is None:
        provider.transform.side_effect = lambda text, instructions, params: text.upper()
    else:
        provider.transform.side_effect = side_effect
    return provider


class TestSuccessfulProcessing:
    def test_records_result_per_chunk_in_order(self, manual_clock: ManualClock) -> None:
        provider = _make_provider()
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(3)

        orchestrator.process(job)

        assert [r.chunk_index for r in job.results] == [0, 1, 2]
        assert all(r.state is ChunkState.SUCCEEDED for r in job.results)
        assert job.results[0].output_text == "C0W0 C0W1 C0W2"

    def test_passes_instructions_and_parameters(self, manual_clock: ManualClock) -> None:
        provider = _make_provider()
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        provider.transform.assert_called_once_with(
            "c0w0 c0w1 c0w2", "Rewrite formally", ModelParameters(model="test-model")
        )

    def test_result_statistics(self, manual_clock: ManualClock) -> None:
        provider = _make_provider(lambda text, instructions, params: text + " extra words here")
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        result = job.results[0]
        assert result.input_words == 3
        assert result.output_words == 6
        assert result.expansion_ratio == 2.0
        assert result.attempt_count == 1
        assert result.attempts[0].outcome is AttemptOutcome.SUCCEEDED

    def test_measures_attempt_latency(self, manual_clock: ManualClock) -> None:
        def slow(text: str, instructions: str, params: ModelParameters) -> str:
            manual_clock.advance(2.5)
            return text

        orchestrator, _budget = _make_orchestrator(manual_clock, _make_provider(slow))
        job = _make_job(1)

        orchestrator.process(job)

        assert job.results[0].attempts[0].latency_seconds == 2.5


class TestTransientFailures:
    def test_retries_after_backoff(self, manual_clock: ManualClock) -> None:
        provider = _make_provider([ProviderTransientError("timed out"), "done"])
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        result = job.results[0]
        assert result.state is ChunkState.SUCCEEDED
        assert result.output_text == "done"
        assert result.attempt_count == 2
        assert result.attempts[0].outcome is AttemptOutcome.FAILED_TRANSIENT
        assert result.attempts[0].error == "timed out"
        assert manual_clock.sleeps == [1.0]

    def test_attempts_bounded_by_max_retries(self, manual_clock: ManualClock) -> None:
        provider = _make_provider(ProviderTransientError("server error"))
        orchestrator, _budget = _make_orchestrator(manual_clock, provider, max_retries=3)
        job = _make_job(1)

        orchestrator.process(job)

        result = job.results[0]
        assert provider.transform.call_count == 3
        assert result.state is ChunkState.FAILED_FATAL
        assert result.failure_kind is FailureKind.RETRIES_EXHAUSTED
        assert result.error_message == "server error"
        assert [a.number for a in result.attempts] == [1, 2, 3]

    def test_backoff_doubles_between_attempts(self, manual_clock: ManualClock) -> None:
        provider = _make_provider(ProviderTransientError("throttled"))
        orchestrator, _budget = _make_orchestrator(manual_clock, provider, max_retries=4)
        job = _make_job(1)

        orchestrator.process(job)

        assert manual_clock.sleeps == [1.0, 2.0, 4.0]

    def test_honours_retry_after(self, manual_clock: ManualClock) -> None:
        provider = _make_provider([ProviderTransientError("429", retry_after=5.0), "ok"])
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        assert manual_clock.sleeps == [5.0]

    def test_retry_after_delay_is_not_undercut_by_next_backoff(
        self, manual_clock: ManualClock
    ) -> None:
        provider = _make_provider(
            [ProviderTransientError("429", retry_after=5.0), ProviderTransientError("timed out"), "ok"]
        )
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        assert job.results[0].succeeded
        assert manual_clock.sleeps == [5.0, 5.0]

    def test_hung_provider_call_is_abandoned(self, manual_clock: ManualClock) -> None:
        release = threading.Event()
        provider = _make_provider(lambda text, instructions, params: release.wait(5.0) and text)
        orchestrator, _budget = _make_orchestrator(
            manual_clock, provider, max_retries=1, call_grace=0.0
        )
        chunk = _make_job(1).chunks[0]

        try:
            result = orchestrator.process_chunk(
                chunk, "", ModelParameters(timeout_seconds=0.05)
            )
        finally:
            release.set()

        assert result is not None
        assert result.failure_kind is FailureKind.RETRIES_EXHAUSTED
        assert "did not return within" in (result.error_message or "")


class TestFatalFailures:
    def test_fatal_error_is_not_retried(self, manual_clock: ManualClock) -> None:
        provider = _make_provider(ProviderFatalError("authentication failed"))
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(1)

        orchestrator.process(job)

        result = job.results[0]
        provider.transform.assert_called_once()
        assert result.state is ChunkState.FAILED_FATAL
        assert result.failure_kind is FailureKind.FATAL
        assert result.error_message == "authentication failed"
        assert result.output_text == ""

    def test_unexpected_error_fails_chunk_only(self, manual_clock: ManualClock) -> None:
        provider = _make_provider([KeyError("choices"), "second"])
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(2)

        orchestrator.process(job)

        assert job.results[0].failure_kind is FailureKind.FATAL
        assert "Unexpected provider error" in (job.results[0].error_message or "")
        assert job.results[1].output_text == "second"

    def test_failed_chunk_does_not_stop_later_chunks(self, manual_clock: ManualClock) -> None:
        def fail_second(text: str, instructions: str, params: ModelParameters) -> str:
            if text.startswith("c1"):
                raise ProviderFatalError("content rejected")
            return text

        provider = _make_provider(fail_second)
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        job = _make_job(4)

        orchestrator.process(job)

        assert provider.transform.call_count == 4
        assert [r.succeeded for r in job.results] == [True, False, True, True]


class TestBudgetPacing:
    def test_requests_are_spaced(self, manual_clock: ManualClock) -> None:
        call_times: list[float] = []

        def record(text: str, instructions: str, params: ModelParameters) -> str:
            call_times.append(manual_clock.monotonic())
            return text

        orchestrator, _budget = _make_orchestrator(manual_clock, _make_provider(record), spacing=15.0)
        orchestrator.process(_make_job(3))

        assert call_times == [0.0, 15.0, 30.0]

    def test_waits_for_quota_within_limit(self, manual_clock: ManualClock) -> None:
        call_times: list[float] = []

        def record(text: str, instructions: str, params: ModelParameters) -> str:
            call_times.append(manual_clock.monotonic())
            return text

        orchestrator, _budget = _make_orchestrator(manual_clock, _make_provider(record), requests=1)
        orchestrator.process(_make_job(2))

        assert call_times == [0.0, 60.0]

    def test_long_budget_wait_becomes_transient_failure(self, manual_clock: ManualClock) -> None:
        provider = _make_provider()
        orchestrator, _budget = _make_orchestrator(
            manual_clock, provider, requests=1, max_budget_wait=10.0
        )
        job = _make_job(2)

        orchestrator.process(job)

        assert provider.transform.call_count == 1
        second = job.results[1]
        assert second.failure_kind is FailureKind.RETRIES_EXHAUSTED
        assert second.attempt_count == 3
        assert "Budget for example" in (second.error_message or "")

    def test_releases_actual_token_usage(self, manual_clock: ManualClock) -> None:
        provider = _make_provider(lambda text, instructions, params: "a b c d e f")
        orchestrator, budget = _make_orchestrator(manual_clock, provider, tokens=1000)

        orchestrator.process(_make_job(1))

        # 3 input words -> 4 tokens, 6 output words -> 8 tokens
        assert budget.snapshot().remaining_tokens == 988


class TestCancellation:
    def test_cancel_prevents_later_chunks(self, manual_clock: ManualClock) -> None:
        job = _make_job(5)

        def cancel_on_second(text: str, instructions: str, params: ModelParameters) -> str:
            if text.startswith("c1"):
                job.request_cancel()
            return text

        provider = _make_provider(cancel_on_second)
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)

        orchestrator.process(job)

        assert provider.transform.call_count == 2
        assert [r.chunk_index for r in job.results] == [0, 1]

    def test_cancel_stops_pending_retry(self, manual_clock: ManualClock) -> None:
        job = _make_job(2)

        def cancel_and_fail(text: str, instructions: str, params: ModelParameters) -> str:
            job.request_cancel()
            raise ProviderTransientError("timed out")

        provider = _make_provider(cancel_and_fail)
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)

        orchestrator.process(job)

        provider.transform.assert_called_once()
        assert job.results == []

    def test_process_chunk_returns_none_when_cancelled(self, manual_clock: ManualClock) -> None:
        provider = _make_provider()
        orchestrator, _budget = _make_orchestrator(manual_clock, provider)
        chunk = _make_job(1).chunks[0]

        cancelled = threading.Event()
        cancelled.set()

        result = orchestrator.process_chunk(
            chunk, "", ModelParameters(), cancel_event=cancelled
        )

        assert result is None
        provider.transform.assert_not_called()

    def test_cancel_during_budget_wait_keeps_chunk_from_provider(self) -> None:
        job = _make_job(4)
        clock = _CancelOnSleepClock(job)
        sent: list[str] = []

        def record(text: str, instructions: str, params: ModelParameters) -> str:
            sent.append(text.split()[0][:2])
            return text

        orchestrator, _budget = _make_orchestrator(clock, _make_provider(record), spacing=15.0)

        orchestrator.process(job)

        assert sent == ["c0"]
        assert [r.chunk_index for r in job.results] == [0]
        assert clock.interrupts == [job.cancel_event]
