from dataclasses import dataclass, field

from docflow.config.settings import Settings

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "


@dataclass(frozen=True)
class Chunk:
    """An ordered, bounded-size slice of one document."""

    index: int
    text: str
    word_count: int


@dataclass(frozen=True)
class ChunkingPolicy:
    """Size limits applied when splitting a document, in words."""

    max_chunk_words: int = 2000
    min_chunk_words: int = 200
    large_document_threshold_words: int = 5000

    def __post_init__(self) -> None:
        if self.max_chunk_words <= 0:
            raise ValueError("max_chunk_words must be positive")
        if self.min_chunk_words <= 0:
            raise ValueError("min_chunk_words must be positive")
        if self.min_chunk_words > self.max_chunk_words:
            raise ValueError("min_chunk_words must not exceed max_chunk_words")
        if self.large_document_threshold_words <= 0:
            raise ValueError("large_document_threshold_words must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChunkingPolicy":
        return cls(
            max_chunk_words=settings.max_chunk_words,
            min_chunk_words=settings.min_chunk_words,
            large_document_threshold_words=settings.large_document_threshold_words,
        )


@dataclass(frozen=True)
class ChunkingResult:
    """Chunks produced for one document plus the separator that rejoins them."""

    chunks: list[Chunk] = field(default_factory=list)
    separator: str = PARAGRAPH_SEPARATOR
    strategy: str = "paragraph"

    @property
    def total_words(self) -> int:
        return sum(chunk.word_count for chunk in self.chunks)
