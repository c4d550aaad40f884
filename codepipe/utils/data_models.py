"""
Core data models for the codepipe indexing pipeline.

This module defines the standard data structures that are passed between
components in the pipeline: source files, chunks, persisted code records,
and the ephemeral results of batched embedding calls.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


Vector = List[float]


@dataclass(frozen=True)
class SourceFile:
    """A file read once during an indexing pass."""

    path: str
    content: str


@dataclass
class Chunk:
    """
    A contiguous span of source text treated as one embedding-request unit.

    Attributes:
        content (str): The text of the span.
        filename (str): Base name of the originating file.
        start_line (int): 1-indexed first line of the span.
        end_line (int): 1-indexed last line of the span (inclusive).
        function (Optional[str]): Name of the enclosing function or method.
        class_name (Optional[str]): Name of the enclosing class, struct or type.
    """

    content: str
    filename: str = ""
    start_line: int = 0
    end_line: int = 0
    function: Optional[str] = None
    class_name: Optional[str] = None


@dataclass
class CodeRecord:
    """
    The persisted triple of file path, chunk text, and its embedding.

    A record is only ever constructed with a non-empty embedding; chunks whose
    embedding failed are dropped before they reach this type.
    """

    file: str
    content: str
    embedding: Vector

    def __post_init__(self):
        if not self.embedding:
            raise ValueError(
                f"CodeRecord for '{self.file}' requires a non-empty embedding."
            )

    def to_dict(self) -> Dict:
        return {
            "file": self.file,
            "content": self.content,
            "embedding": list(self.embedding),
        }


@dataclass
class BatchResult:
    """One window of texts sent in a single remote call, and its outcome."""

    start: int
    texts: List[str]
    vectors: List[Vector] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchEmbedding:
    """
    The outcome of embedding a list of texts across one or more windows.

    Attributes:
        vectors (Dict[int, Vector]): Vectors keyed by the position of their text
            in the caller's input list.
        skipped (List[int]): Positions excluded before any request was made
            (empty after trimming, or over the token ceiling).
        failed (List[int]): Positions whose window was abandoned or whose
            vector came back empty.
        errors (List[Exception]): One error per abandoned window.
    """

    vectors: Dict[int, Vector] = field(default_factory=dict)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def lost(self) -> int:
        return len(self.failed)
