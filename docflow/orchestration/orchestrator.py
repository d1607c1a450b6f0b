"""Sequential, budget-paced processing of one job's chunks."""

import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from dataclasses import dataclass, field

from docflow.budget.clock import Clock
from docflow.budget.provider_budget import BudgetGrant, ProviderBudget, estimate_tokens
from docflow.chunking.chunker import count_words
from docflow.chunking.models import Chunk
from docflow.logging.logger import Log
from docflow.orchestration.exceptions import BudgetExhaustedError
from docflow.orchestration.models import (
    AttemptOutcome,
    ChunkState,
    FailureKind,
    OrchestrationJob,
    RequestAttempt,
    TransformationResult,
)
from docflow.orchestration.retry_policy import RetryPolicy
from docflow.providers.base import BaseProvider
from docflow.providers.exceptions import ProviderFatalError, ProviderTransientError
from docflow.providers.models import ModelParameters

DEFAULT_CALL_TIMEOUT_GRACE_SECONDS = 5.0


@dataclass
class _ChunkProgress:
    chunk: Chunk
    job_id: str = "-"
    state: ChunkState = ChunkState.PENDING
    attempts: list[RequestAttempt] = field(default_factory=list)
    wake_at: float = 0.0
    last_delay: float = 0.0
    output_text: str = ""
    failure_kind: FailureKind | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ChunkState.SUCCEEDED, ChunkState.FAILED_FATAL)

    def to_result(self) -> TransformationResult:
        return TransformationResult(
            chunk_index=self.chunk.index,
            state=self.state,
            input_words=self.chunk.word_count,
            output_text=self.output_text,
            output_words=count_words(self.output_text),
            attempts=tuple(self.attempts),
            failure_kind=self.failure_kind,
            error_message=self.error_message,
        )


class ChunkOrchestrator:
    """Submits chunks to a provider one at a time, in index order.

    Each attempt first acquires the shared provider budget, sleeping on the
    clock for whatever wait it reports. Transient failures move the chunk to
    RETRYING with a wake time from the retry policy; fatal failures end the
    chunk at once. A failed chunk never stops the chunks after it.

    Every provider call runs on a helper thread and is abandoned as a
    transient failure once ``timeout_seconds`` plus ``call_timeout_grace_seconds``
    have passed, so an adapter that ignores its timeout cannot hold the job.
    """

    def __init__(
        self,
        *,
        provider: BaseProvider,
        budget: ProviderBudget,
        retry_policy: RetryPolicy,
        clock: Clock,
        max_budget_wait_seconds: float,
        call_timeout_grace_seconds: float = DEFAULT_CALL_TIMEOUT_GRACE_SECONDS,
    ) -> None:
        self._provider = provider
        self._budget = budget
        self._retry_policy = retry_policy
        self._clock = clock
        self._max_budget_wait_seconds = max_budget_wait_seconds
        self._call_timeout_grace_seconds = call_timeout_grace_seconds

    def process(self, job: OrchestrationJob) -> None:
        """Process every chunk of ``job``, appending results as chunks finish.

        Stops before the next chunk (or retry) once cancellation is requested,
        including while a chunk is still waiting for budget; an attempt already
        in flight is allowed to finish.
        """
        total = len(job.chunks)
        document = job.document
        for chunk in job.chunks:
            if job.cancel_requested:
                Log.warning(
                    f"Cancelled before chunk {chunk.index + 1}/{total}", job_id=job.id
                )
                return
            Log.info(
                f"Processing chunk {chunk.index + 1}/{total} ({chunk.word_count} words)",
                job_id=job.id,
            )
            result = self.process_chunk(
                chunk,
                document.instructions,
                document.model_parameters,
                cancel_event=job.cancel_event,
                job_id=job.id,
            )
            if result is None:
                Log.warning(
                    f"Cancelled while chunk {chunk.index + 1} was waiting to be sent",
                    job_id=job.id,
                )
                return
            job.record_result(result)

    def process_chunk(
        self,
        chunk: Chunk,
        instructions: str,
        model_parameters: ModelParameters,
        *,
        cancel_event: threading.Event | None = None,
        job_id: str = "-",
    ) -> TransformationResult | None:
        """Drive one chunk to a terminal state.

        Returns None when cancellation arrived before the chunk's next attempt
        reached the provider.
        """
        cancel_event = cancel_event or threading.Event()
        progress = _ChunkProgress(chunk=chunk, job_id=job_id)
        while not progress.is_terminal:
            if progress.state is ChunkState.RETRYING:
                self._sleep_until(progress.wake_at, cancel_event)
                if cancel_event.is_set():
                    return None
                progress.state = ChunkState.PENDING
            if not self._attempt(progress, instructions, model_parameters, cancel_event):
                return None
        return progress.to_result()

    def _attempt(
        self,
        progress: _ChunkProgress,
        instructions: str,
        model_parameters: ModelParameters,
        cancel_event: threading.Event,
    ) -> bool:
        """Run one attempt; False when cancellation stopped it before the call."""
        chunk = progress.chunk
        attempt = RequestAttempt(
            number=len(progress.attempts) + 1,
            chunk_index=chunk.index,
            started_at=self._clock.monotonic(),
        )
        progress.attempts.append(attempt)
        cost = estimate_tokens(chunk.text)

        try:
            grant = self._acquire_budget(cost, cancel_event)
        except BudgetExhaustedError as exc:
            self._handle_transient(progress, attempt, exc)
            return True
        if grant is None:
            progress.attempts.pop()
            return False

        progress.state = ChunkState.IN_FLIGHT
        attempt.started_at = self._clock.monotonic()
        output = ""
        try:
            output = self._call_provider(chunk.text, instructions, model_parameters)
        except ProviderTransientError as exc:
            self._handle_transient(progress, attempt, exc)
        except ProviderFatalError as exc:
            self._handle_fatal(progress, attempt, str(exc))
        except Exception as exc:
            Log.exception(
                f"Unexpected provider error on chunk {chunk.index + 1}", job_id=progress.job_id
            )
            self._handle_fatal(progress, attempt, f"Unexpected provider error: {exc}")
        else:
            attempt.outcome = AttemptOutcome.SUCCEEDED
            progress.state = ChunkState.SUCCEEDED
            progress.output_text = output
        finally:
            attempt.latency_seconds = self._clock.monotonic() - attempt.started_at
            self._budget.release(grant, cost + estimate_tokens(output))

        if progress.state is ChunkState.SUCCEEDED:
            Log.info(
                f"Chunk {chunk.index + 1} succeeded on attempt {attempt.number} "
                f"in {attempt.latency_seconds:.2f}s",
                job_id=progress.job_id,
            )
        return True

    def _call_provider(
        self,
        chunk_text: str,
        instructions: str,
        model_parameters: ModelParameters,
    ) -> str:
        deadline = model_parameters.timeout_seconds + self._call_timeout_grace_seconds
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docflow-call")
        try:
            future = executor.submit(
                self._provider.transform, chunk_text, instructions, model_parameters
            )
            try:
                return future.result(timeout=deadline)
            except TimeoutError as exc:
                raise ProviderTransientError(
                    f"{self._budget.provider_id} call did not return within {deadline:.1f}s"
                ) from exc
        finally:
            executor.shutdown(wait=False)

    def _acquire_budget(self, cost: int, cancel_event: threading.Event) -> BudgetGrant | None:
        """Wait for a budget grant; None once ``cancel_event`` is set."""
        while not cancel_event.is_set():
            decision = self._budget.try_acquire(cost)
            if decision.grant is not None:
                return decision.grant
            if decision.wait_seconds > self._max_budget_wait_seconds:
                raise BudgetExhaustedError(
                    self._budget.provider_id,
                    decision.wait_seconds,
                    self._max_budget_wait_seconds,
                )
            Log.debug(
                f"Waiting {decision.wait_seconds:.2f}s for {self._budget.provider_id} budget"
            )
            self._clock.sleep(decision.wait_seconds, cancel_event)
        return None

    def _handle_transient(
        self,
        progress: _ChunkProgress,
        attempt: RequestAttempt,
        exc: ProviderTransientError,
    ) -> None:
        attempt.outcome = AttemptOutcome.FAILED_TRANSIENT
        attempt.error = str(exc)
        chunk_label = progress.chunk.index + 1
        if self._retry_policy.should_retry(attempt.number):
            delay = self._retry_policy.backoff_seconds(
                attempt.number, exc.retry_after, progress.last_delay
            )
            progress.last_delay = delay
            progress.state = ChunkState.RETRYING
            progress.wake_at = self._clock.monotonic() + delay
            Log.warning(
                f"Chunk {chunk_label} attempt {attempt.number} failed: {exc}. "
                f"Retrying in {delay:.1f}s",
                job_id=progress.job_id,
            )
            return
        progress.state = ChunkState.FAILED_FATAL
        progress.failure_kind = FailureKind.RETRIES_EXHAUSTED
        progress.error_message = str(exc)
        Log.error(
            f"Chunk {chunk_label} failed after {attempt.number} attempts: {exc}",
            job_id=progress.job_id,
        )

    def _handle_fatal(
        self,
        progress: _ChunkProgress,
        attempt: RequestAttempt,
        message: str,
    ) -> None:
        attempt.outcome = AttemptOutcome.FAILED_FATAL
        attempt.error = message
        progress.state = ChunkState.FAILED_FATAL
        progress.failure_kind = FailureKind.FATAL
        progress.error_message = message
        Log.error(
            f"Chunk {progress.chunk.index + 1} failed permanently: {message}",
            job_id=progress.job_id,
        )

    def _sleep_until(self, wake_at: float, cancel_event: threading.Event) -> None:
        remaining = wake_at - self._clock.monotonic()
        if remaining > 0:
            self._clock.sleep(remaining, cancel_event)
