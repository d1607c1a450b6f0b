"""Splits raw document text into ordered, bounded-size chunks."""

import re
from dataclasses import dataclass

from docflow.chunking.exceptions import EmptyDocumentError
from docflow.chunking.models import (
    PARAGRAPH_SEPARATOR,
    SENTENCE_SEPARATOR,
    Chunk,
    ChunkingPolicy,
    ChunkingResult,
)
from docflow.logging.logger import Log

_PARAGRAPH_BREAK = re.compile(r"\n[^\S\n]*\n\s*")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")


def count_words(text: str) -> int:
    """Count whitespace-delimited words."""
    return len(text.split())


@dataclass(frozen=True)
class _Unit:
    text: str
    words: int


class DocumentChunker:
    """Packs paragraphs (or sentences, as a fallback) into chunks.

    Packing is greedy: units are appended to the current chunk until the next
    one would push it past ``max_chunk_words``. A unit that alone exceeds the
    limit becomes its own oversized chunk instead of being cut.
    """

    def split(self, text: str, policy: ChunkingPolicy) -> ChunkingResult:
        """Split ``text`` into chunks according to ``policy``.

        Raises:
            EmptyDocumentError: if the text has no words after trimming.
        """
        stripped = text.strip()
        total_words = count_words(stripped)
        if total_words == 0:
            raise EmptyDocumentError("Document contains no words")

        paragraphs = self._split_units(stripped, _PARAGRAPH_BREAK)
        if len(paragraphs) >= 2:
            groups = self._pack(paragraphs, policy)
            if len(groups) > 1 or total_words <= policy.large_document_threshold_words:
                return self._build(groups, PARAGRAPH_SEPARATOR, "paragraph")
            Log.debug(
                f"Paragraph packing produced one chunk for {total_words} words, "
                "falling back to sentence boundaries"
            )
        else:
            Log.debug("Fewer than two paragraphs found, splitting on sentence boundaries")

        sentences = self._split_units(stripped, _SENTENCE_BREAK)
        groups = self._pack(sentences, policy)
        return self._build(groups, SENTENCE_SEPARATOR, "sentence")

    @staticmethod
    def _split_units(text: str, pattern: re.Pattern[str]) -> list[_Unit]:
        units: list[_Unit] = []
        for part in pattern.split(text):
            part = part.strip()
            if part:
                units.append(_Unit(text=part, words=count_words(part)))
        return units

    def _pack(self, units: list[_Unit], policy: ChunkingPolicy) -> list[list[_Unit]]:
        groups: list[list[_Unit]] = []
        current: list[_Unit] = []
        current_words = 0
        for unit in units:
            if current and current_words + unit.words > policy.max_chunk_words:
                groups.append(current)
                current = []
                current_words = 0
            current.append(unit)
            current_words += unit.words
        if current:
            groups.append(current)
        self._rebalance(groups, policy)
        return groups

    @staticmethod
    def _rebalance(groups: list[list[_Unit]], policy: ChunkingPolicy) -> None:
        """Shift trailing units of a chunk into an undersized successor.

        Greedy packing leaves a non-final chunk short only when the unit after
        it is large. Such a chunk borrows the trailing units of its predecessor
        while both stay within limits. The final chunk may stay short.
        """
        for i in range(1, len(groups) - 1):
            previous, current = groups[i - 1], groups[i]
            current_words = sum(u.words for u in current)
            previous_words = sum(u.words for u in previous)
            while current_words < policy.min_chunk_words and len(previous) > 1:
                candidate = previous[-1]
                if previous_words - candidate.words < policy.min_chunk_words:
                    break
                if current_words + candidate.words > policy.max_chunk_words:
                    break
                current.insert(0, previous.pop())
                previous_words -= candidate.words
                current_words += candidate.words

    @staticmethod
    def _build(groups: list[list[_Unit]], separator: str, strategy: str) -> ChunkingResult:
        chunks = [
            Chunk(
                index=index,
                text=separator.join(unit.text for unit in group),
                word_count=sum(unit.words for unit in group),
            )
            for index, group in enumerate(groups)
        ]
        return ChunkingResult(chunks=chunks, separator=separator, strategy=strategy)
