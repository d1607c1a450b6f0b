import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from docflow.aggregation.aggregator import ResultAggregator
from docflow.aggregation.models import Statistics
from docflow.budget.clock import Clock, SystemClock
from docflow.budget.provider_budget import BudgetLimits
from docflow.budget.registry import BudgetRegistry
from docflow.chunking.chunker import DocumentChunker
from docflow.chunking.models import ChunkingPolicy
from docflow.config.settings import Settings
from docflow.logging.logger import Log
from docflow.orchestration.exceptions import JobNotFinishedError, JobNotFoundError
from docflow.orchestration.models import Document, JobState, OrchestrationJob
from docflow.orchestration.retry_policy import RetryPolicy
from docflow.providers.base import BaseProvider
from docflow.providers.models import ModelParameters
from docflow.worker.job_runner import JobRunner


@dataclass(frozen=True)
class JobStatus:
    job_id: str
    state: JobState
    completed_chunks: int
    total_chunks: int
    partial_preview: str = ""


@dataclass(frozen=True)
class JobResult:
    job_id: str
    state: JobState
    final_text: str
    statistics: Statistics = field(default_factory=Statistics)
    error_message: str = ""


class TransformationPipeline:
    """Caller-facing entry point: submit documents, poll, fetch results, cancel.

    Each job runs on its own worker thread; jobs that target the same provider
    share that provider's budget.
    """

    def __init__(
        self,
        job_runner: JobRunner,
        settings: Settings,
        aggregator: ResultAggregator | None = None,
    ) -> None:
        self._job_runner = job_runner
        self._settings = settings
        self._aggregator = aggregator or ResultAggregator()
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_jobs,
            thread_name_prefix="docflow-job",
        )
        self._jobs: dict[str, OrchestrationJob] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "TransformationPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def submit(
        self,
        document_text: str,
        provider_id: str,
        instructions: str = "",
        chunking_policy: ChunkingPolicy | None = None,
        model_parameters: ModelParameters | None = None,
    ) -> str:
        """Queue a document for transformation and return its job id.

        Raises:
            ValueError: if ``provider_id`` is unknown.
        """
        self._job_runner.provider_for(provider_id)
        provider = provider_id.strip().lower()
        job_id = uuid.uuid4().hex
        document = Document(
            id=job_id,
            text=document_text,
            provider_id=provider,
            instructions=instructions,
            model_parameters=model_parameters or self._job_runner.model_parameters_for(provider),
        )
        job = OrchestrationJob(id=job_id, document=document)
        policy = chunking_policy or ChunkingPolicy.from_settings(self._settings)
        with self._lock:
            self._evict_finished_jobs()
            self._jobs[job_id] = job
        self._executor.submit(self._job_runner.run, job, policy)
        Log.info(f"Queued for provider '{provider}'", job_id=job_id)
        return job_id

    def get_status(self, job_id: str) -> JobStatus:
        job = self._get_job(job_id)
        results = job.results_snapshot()
        return JobStatus(
            job_id=job_id,
            state=job.state,
            completed_chunks=len(results),
            total_chunks=len(job.chunks),
            partial_preview=self._aggregator.preview(
                results, job.separator, self._settings.status_preview_chars
            ),
        )

    def get_result(self, job_id: str) -> JobResult:
        """Final text and statistics of a finished job.

        Raises:
            JobNotFinishedError: if the job has not reached a terminal state.
        """
        job = self._get_job(job_id)
        if not job.state.is_terminal:
            raise JobNotFinishedError(f"Job {job_id} is still {job.state.value}")
        return JobResult(
            job_id=job_id,
            state=job.state,
            final_text=job.final_text,
            statistics=job.statistics,
            error_message=job.error_message,
        )

    def cancel(self, job_id: str) -> None:
        """Ask a job to stop before its next chunk. No-op once it has finished."""
        job = self._get_job(job_id)
        if job.state.is_terminal:
            return
        job.request_cancel()
        Log.info("Cancellation requested", job_id=job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> JobState:
        """Block until the job finishes or ``timeout`` elapses; return its state."""
        job = self._get_job(job_id)
        job.wait(timeout)
        return job.state

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _evict_finished_jobs(self) -> None:
        """Drop the oldest finished jobs beyond ``finished_job_retention``.

        Caller must hold ``self._lock``.
        """
        finished = [job_id for job_id, job in self._jobs.items() if job.state.is_terminal]
        excess = len(finished) - self._settings.finished_job_retention
        for job_id in finished[: max(0, excess)]:
            del self._jobs[job_id]
            Log.debug("Evicted finished job", job_id=job_id)

    def _get_job(self, job_id: str) -> OrchestrationJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Unknown job {job_id}")
        return job


def build_pipeline(
    settings: Settings,
    clock: Clock | None = None,
    providers: dict[str, BaseProvider] | None = None,
) -> TransformationPipeline:
    """Build a TransformationPipeline with all required collaborators."""
    clock = clock or SystemClock()
    job_runner = JobRunner(
        chunker=DocumentChunker(),
        aggregator=ResultAggregator(),
        budgets=BudgetRegistry(BudgetLimits.from_settings(settings), clock),
        retry_policy=RetryPolicy.from_settings(settings),
        clock=clock,
        settings=settings,
        providers=providers,
    )
    return TransformationPipeline(job_runner, settings)
