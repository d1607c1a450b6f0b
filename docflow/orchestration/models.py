import threading
from dataclasses import dataclass, field
from enum import Enum

from docflow.aggregation.models import Statistics
from docflow.chunking.models import PARAGRAPH_SEPARATOR, Chunk
from docflow.providers.models import ModelParameters


class JobState(str, Enum):
    QUEUED = "queued"
    CHUNKING = "chunking"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATES


_TERMINAL_JOB_STATES = frozenset(
    {JobState.COMPLETED, JobState.PARTIALLY_FAILED, JobState.FAILED, JobState.CANCELLED}
)


class ChunkState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED_FATAL = "failed_fatal"


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_FATAL = "failed_fatal"


class FailureKind(str, Enum):
    FATAL = "fatal"
    RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass(frozen=True)
class Document:
    """A submitted document. Never modified once it enters the pipeline."""

    id: str
    text: str
    provider_id: str
    instructions: str = ""
    model_parameters: ModelParameters = field(default_factory=ModelParameters)


@dataclass
class RequestAttempt:
    """One try at transforming one chunk."""

    number: int
    chunk_index: int
    started_at: float
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    latency_seconds: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class TransformationResult:
    """Terminal outcome of one chunk."""

    chunk_index: int
    state: ChunkState
    input_words: int
    output_text: str = ""
    output_words: int = 0
    attempts: tuple[RequestAttempt, ...] = ()
    failure_kind: FailureKind | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ChunkState.SUCCEEDED

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def expansion_ratio(self) -> float:
        if not self.succeeded or self.input_words == 0:
            return 0.0
        return self.output_words / self.input_words


@dataclass
class OrchestrationJob:
    """Whole-document unit of work shared between the runner and callers."""

    id: str
    document: Document
    state: JobState = JobState.QUEUED
    chunks: list[Chunk] = field(default_factory=list)
    separator: str = PARAGRAPH_SEPARATOR
    results: list[TransformationResult] = field(default_factory=list)
    final_text: str = ""
    statistics: Statistics = field(default_factory=Statistics)
    error_message: str = ""
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _done_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def request_cancel(self) -> None:
        self._cancel_event.set()

    def transition(self, state: JobState) -> None:
        with self._lock:
            if self.state.is_terminal:
                raise ValueError(f"Job {self.id} already finished as {self.state.value}")
            self.state = state
        if state.is_terminal:
            self._done_event.set()

    def record_result(self, result: TransformationResult) -> None:
        """Append a chunk result; results must arrive in chunk order."""
        with self._lock:
            expected = len(self.results)
            if result.chunk_index != expected:
                raise ValueError(
                    f"Job {self.id}: result for chunk {result.chunk_index} "
                    f"recorded out of order (expected chunk {expected})"
                )
            self.results.append(result)

    def results_snapshot(self) -> list[TransformationResult]:
        with self._lock:
            return list(self.results)

    def wait(self, timeout: float | None = None) -> bool:
        return self._done_event.wait(timeout)
