class ChunkingError(Exception):
    """Base exception for document chunking errors."""


class EmptyDocumentError(ChunkingError):
    """Raised when a document has no words to chunk."""
