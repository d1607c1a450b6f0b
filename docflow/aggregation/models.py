from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChunkStatistics:
    """Per-chunk figures reported alongside the aggregated text."""

    chunk_index: int
    state: str
    input_words: int
    output_words: int
    expansion_ratio: float
    attempts: int
    failure_kind: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class Statistics:
    """Aggregate figures for a whole job.

    ``expansion_ratio`` is computed over succeeded chunks only, so a partial
    failure does not read as the provider shrinking the text.
    """

    total_input_words: int = 0
    total_output_words: int = 0
    expansion_ratio: float = 0.0
    chunks: list[ChunkStatistics] = field(default_factory=list)
    retried_chunks: int = 0
    fatal_failures: int = 0
    skipped_chunks: int = 0
    failed_chunk_indices: list[int] = field(default_factory=list)

    @property
    def succeeded_chunks(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.state == "succeeded")
