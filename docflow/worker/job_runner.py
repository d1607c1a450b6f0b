import threading

from docflow.aggregation.aggregator import ResultAggregator
from docflow.budget.clock import Clock
from docflow.budget.registry import BudgetRegistry
from docflow.chunking.chunker import DocumentChunker
from docflow.chunking.exceptions import EmptyDocumentError
from docflow.chunking.models import ChunkingPolicy
from docflow.config.settings import Settings
from docflow.logging.logger import Log
from docflow.orchestration.models import JobState, OrchestrationJob, TransformationResult
from docflow.orchestration.orchestrator import ChunkOrchestrator
from docflow.orchestration.retry_policy import RetryPolicy
from docflow.providers.base import BaseProvider
from docflow.providers.factory import ProviderFactory
from docflow.providers.models import ModelParameters


class JobRunner:
    """Run one job: chunk -> process -> aggregate, and never raise."""

    def __init__(
        self,
        *,
        chunker: DocumentChunker,
        aggregator: ResultAggregator,
        budgets: BudgetRegistry,
        retry_policy: RetryPolicy,
        clock: Clock,
        settings: Settings,
        providers: dict[str, BaseProvider] | None = None,
    ) -> None:
        self._chunker = chunker
        self._aggregator = aggregator
        self._budgets = budgets
        self._retry_policy = retry_policy
        self._clock = clock
        self._settings = settings
        self._providers = {k.lower(): v for k, v in (providers or {}).items()}
        self._providers_lock = threading.Lock()

    def provider_for(self, provider_id: str) -> BaseProvider:
        """Return the cached adapter for ``provider_id``.

        Raises:
            ValueError: if the provider id is unknown.
        """
        key = provider_id.strip().lower()
        with self._providers_lock:
            provider = self._providers.get(key)
            if provider is None:
                provider = ProviderFactory.create(key, self._settings)
                self._providers[key] = provider
            return provider

    def model_parameters_for(self, provider_id: str) -> ModelParameters:
        return ProviderFactory.model_parameters(provider_id, self._settings)

    def run(self, job: OrchestrationJob, policy: ChunkingPolicy) -> None:
        """Execute a single job with error handling."""
        Log.info(f"Running on provider '{job.document.provider_id}'", job_id=job.id)
        try:
            self._execute(job, policy)
        except Exception as exc:
            self._handle_failure(job, exc)

    def _execute(self, job: OrchestrationJob, policy: ChunkingPolicy) -> None:
        if job.cancel_requested:
            job.transition(JobState.CANCELLED)
            Log.info("Cancelled before it started", job_id=job.id)
            return

        job.transition(JobState.CHUNKING)
        try:
            chunking = self._chunker.split(job.document.text, policy)
        except EmptyDocumentError as exc:
            job.error_message = str(exc)
            job.transition(JobState.FAILED)
            Log.error(f"Failed during chunking: {exc}", job_id=job.id)
            return
        job.chunks = chunking.chunks
        job.separator = chunking.separator
        Log.info(
            f"Split {chunking.total_words} words into "
            f"{len(chunking.chunks)} chunks on {chunking.strategy} boundaries",
            job_id=job.id,
        )

        job.transition(JobState.PROCESSING)
        budget = self._budgets.get(job.document.provider_id)
        if self._settings.budget_reset_per_job:
            budget.reset()
        orchestrator = ChunkOrchestrator(
            provider=self.provider_for(job.document.provider_id),
            budget=budget,
            retry_policy=self._retry_policy,
            clock=self._clock,
            max_budget_wait_seconds=self._settings.max_budget_wait_ms / 1000,
        )
        started_at = self._clock.monotonic()
        orchestrator.process(job)

        job.transition(JobState.AGGREGATING)
        results = job.results_snapshot()
        job.final_text, job.statistics = self._aggregator.aggregate(
            results, job.separator, total_chunks=len(job.chunks)
        )
        final_state = self._final_state(results, len(job.chunks))
        job.transition(final_state)
        Log.info(
            f"Finished as {final_state.value} in "
            f"{self._clock.monotonic() - started_at:.1f}s: "
            f"{job.statistics.succeeded_chunks}/{len(job.chunks)} chunks succeeded, "
            f"expansion ratio {job.statistics.expansion_ratio:.2f}",
            job_id=job.id,
        )

    @staticmethod
    def _final_state(results: list[TransformationResult], total_chunks: int) -> JobState:
        if len(results) < total_chunks:
            return JobState.CANCELLED
        succeeded = sum(1 for r in results if r.succeeded)
        if succeeded == total_chunks:
            return JobState.COMPLETED
        if succeeded == 0:
            return JobState.FAILED
        return JobState.PARTIALLY_FAILED

    def _handle_failure(self, job: OrchestrationJob, exc: Exception) -> None:
        Log.exception(f"Job failed: {exc}", job_id=job.id)
        job.error_message = str(exc)
        if not job.state.is_terminal:
            job.transition(JobState.FAILED)
