"""
Error taxonomy for the codepipe pipeline.

Per-file and per-window errors are recovered locally by the orchestrator;
run-level errors (scan failures, missing credentials, empty runs, persistence
failures) propagate to the CLI and end the process with a non-zero status.
"""


class CodePipeError(Exception):
    """Base class for all pipeline errors."""


class ScanError(CodePipeError):
    """The discovery root is missing, or a directory could not be read."""


class ReadError(CodePipeError):
    """A single source file could not be read."""

    def __init__(self, path: str, message: str):
        super().__init__(f"failed to read file '{path}': {message}")
        self.path = path


class ChunkingError(CodePipeError):
    """A chunker failed in a way its fallback could not absorb."""


class EmbeddingError(CodePipeError):
    """Embeddings could not be produced for a request."""


class EmbeddingAuthError(EmbeddingError):
    """The embedding provider rejected, or was never given, a credential."""


class EmbeddingRateLimitError(EmbeddingError):
    """The embedding provider reported that its rate limit was hit."""


class EmbeddingTransientError(EmbeddingError):
    """A network, timeout or server-side fault while calling the provider."""


class FileProcessingError(CodePipeError):
    """Wraps any failure that stopped one file from producing records."""

    def __init__(self, path: str, cause: Exception):
        super().__init__(f"error processing {path}: {cause}")
        self.path = path
        self.cause = cause


class IndexingError(CodePipeError):
    """The indexing run as a whole cannot produce a usable result."""


class PersistError(CodePipeError):
    """The final write of the result set failed."""
