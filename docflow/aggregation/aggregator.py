from collections.abc import Sequence

from docflow.aggregation.models import ChunkStatistics, Statistics
from docflow.chunking.models import PARAGRAPH_SEPARATOR
from docflow.orchestration.models import TransformationResult


class ResultAggregator:
    """Merges ordered chunk results into one document plus statistics."""

    FAILED_PLACEHOLDER = "[chunk {number} failed: {reason}]"
    SKIPPED_PLACEHOLDER = "[chunk {number} not processed: job cancelled]"

    def aggregate(
        self,
        results: Sequence[TransformationResult],
        separator: str = PARAGRAPH_SEPARATOR,
        total_chunks: int | None = None,
    ) -> tuple[str, Statistics]:
        """Join chunk outputs in index order.

        Failed chunks are replaced by a visible placeholder. When
        ``total_chunks`` exceeds the number of results, the missing trailing
        chunks (never started because the job was cancelled) get a placeholder
        too.

        Raises:
            ValueError: if results are not in strictly increasing dense order.
        """
        self._check_order(results)
        total = len(results) if total_chunks is None else max(total_chunks, len(results))

        pieces: list[str] = []
        chunk_stats: list[ChunkStatistics] = []
        for result in results:
            pieces.append(self._render(result))
            chunk_stats.append(self._chunk_statistics(result))
        for index in range(len(results), total):
            pieces.append(self.SKIPPED_PLACEHOLDER.format(number=index + 1))

        succeeded = [r for r in results if r.succeeded]
        succeeded_input = sum(r.input_words for r in succeeded)
        total_output = sum(r.output_words for r in succeeded)
        statistics = Statistics(
            total_input_words=sum(r.input_words for r in results),
            total_output_words=total_output,
            expansion_ratio=total_output / succeeded_input if succeeded_input else 0.0,
            chunks=chunk_stats,
            retried_chunks=sum(1 for r in results if r.attempt_count > 1),
            fatal_failures=sum(1 for r in results if not r.succeeded),
            skipped_chunks=total - len(results),
            failed_chunk_indices=[r.chunk_index for r in results if not r.succeeded],
        )
        return separator.join(pieces), statistics

    def preview(
        self,
        results: Sequence[TransformationResult],
        separator: str = PARAGRAPH_SEPARATOR,
        limit: int = 500,
    ) -> str:
        """Leading ``limit`` characters of the text aggregated so far."""
        self._check_order(results)
        text = separator.join(self._render(r) for r in results)
        return text[:limit]

    def _render(self, result: TransformationResult) -> str:
        if result.succeeded:
            return result.output_text
        reason = result.error_message or (
            result.failure_kind.value if result.failure_kind else "unknown error"
        )
        return self.FAILED_PLACEHOLDER.format(number=result.chunk_index + 1, reason=reason)

    @staticmethod
    def _chunk_statistics(result: TransformationResult) -> ChunkStatistics:
        return ChunkStatistics(
            chunk_index=result.chunk_index,
            state=result.state.value,
            input_words=result.input_words,
            output_words=result.output_words,
            expansion_ratio=result.expansion_ratio,
            attempts=result.attempt_count,
            failure_kind=result.failure_kind.value if result.failure_kind else None,
            error_message=result.error_message,
        )

    @staticmethod
    def _check_order(results: Sequence[TransformationResult]) -> None:
        for position, result in enumerate(results):
            if result.chunk_index != position:
                raise ValueError(
                    f"Result at position {position} belongs to chunk {result.chunk_index}"
                )
