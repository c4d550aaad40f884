"""
Chunking components for the codepipe pipeline.

This module splits a source file into bounded-size units before they are
embedded. The generic strategy coalesces blank-line separated paragraphs; the
syntax-aware strategy parses the file with tree-sitter and emits one chunk per
named function or class definition, falling back to the generic strategy
whenever no definitions can be extracted.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import os
import threading
from typing import List, Optional, Tuple

import tree_sitter_language_pack

from ..utils.data_models import Chunk, SourceFile
from .languages import LanguageSpec, language_for_file

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 8000

# Inserted between coalesced paragraphs; counts toward the maximum size.
PARAGRAPH_SEPARATOR = "\n\n"


def _paragraphs(text: str) -> List[Tuple[int, int, str]]:
    """Returns (start_line, end_line, text) for each run of non-blank lines."""
    paragraphs = []
    current = []
    start = 0
    for number, line in enumerate(text.split("\n"), start=1):
        if line.strip():
            if not current:
                start = number
            current.append(line)
        elif current:
            paragraphs.append((start, number - 1, "\n".join(current)))
            current = []
    if current:
        paragraphs.append((start, start + len(current) - 1, "\n".join(current)))
    return paragraphs


def split_paragraphs(text: str, max_size: int, filename: str = "") -> List[Chunk]:
    """
    Splits text into chunks of at most `max_size` characters.

    Paragraphs are greedily coalesced into a running buffer. The buffer is
    flushed before a paragraph that would push it past `max_size`, and right
    after it reaches `max_size`. A single paragraph longer than `max_size` is
    emitted on its own and never split further.

    Args:
        text (str): The text to split.
        max_size (int): Maximum chunk length in characters.
        filename (str): Recorded on every chunk.

    Returns:
        List[Chunk]: Chunks in source order, with 1-indexed line ranges.
    """
    if max_size <= 0:
        raise ValueError("max_size must be a positive integer.")

    chunks = []
    buffer = []
    length = 0

    def flush():
        nonlocal buffer, length
        if buffer:
            chunks.append(
                Chunk(
                    content=PARAGRAPH_SEPARATOR.join(p[2] for p in buffer),
                    filename=filename,
                    start_line=buffer[0][0],
                    end_line=buffer[-1][1],
                )
            )
        buffer = []
        length = 0

    for paragraph in _paragraphs(text):
        size = len(paragraph[2])
        if buffer and length + len(PARAGRAPH_SEPARATOR) + size > max_size:
            flush()
        if buffer:
            length += len(PARAGRAPH_SEPARATOR)
        buffer.append(paragraph)
        length += size
        if length >= max_size:
            flush()

    flush()
    return chunks


class BaseChunker(ABC):
    """Abstract base class for all chunker components."""

    @abstractmethod
    def chunk(self, source: SourceFile) -> List[Chunk]:
        """
        Chunks a single source file into an ordered list of chunks.

        Args:
            source (SourceFile): The file to be chunked.

        Returns:
            List[Chunk]: The chunks, in source order. Empty when the file has
                no non-blank content.
        """
        pass


class ParagraphChunker(BaseChunker):
    """
    A chunker that splits text on blank lines and coalesces the paragraphs
    up to a maximum size.
    """

    def __init__(self, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be a positive integer.")
        self.max_chunk_size = max_chunk_size
        logger.debug(f"Initialized ParagraphChunker with size={max_chunk_size}")

    def split(self, text: str, filename: str = "") -> List[Chunk]:
        return split_paragraphs(text, self.max_chunk_size, filename)

    def chunk(self, source: SourceFile) -> List[Chunk]:
        if not source.content.strip():
            logger.warning(f"File '{source.path}' is empty. Skipping chunking.")
            return []
        chunks = self.split(source.content, os.path.basename(source.path))
        logger.debug(f"Created {len(chunks)} chunks from file: {source.path}")
        return chunks


@dataclass
class SyntaxSpan:
    """A definition or import located in a syntax tree (1-indexed lines)."""

    kind: str
    start_line: int
    end_line: int
    function: Optional[str] = None
    class_name: Optional[str] = None


class SyntaxChunker(BaseChunker):
    """
    A chunker that emits one chunk per named definition found by tree-sitter.

    Files without a registered grammar, files that fail to parse, and files in
    which no definition is found are chunked with the paragraph algorithm.
    """

    def __init__(self, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE):
        self._fallback = ParagraphChunker(max_chunk_size)
        self.max_chunk_size = max_chunk_size
        # tree-sitter parsers are not safe to share between threads.
        self._local = threading.local()
        logger.debug(f"Initialized SyntaxChunker with size={max_chunk_size}")

    def _parser(self, language: LanguageSpec):
        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        if language.grammar not in parsers:
            parsers[language.grammar] = tree_sitter_language_pack.get_parser(
                language.grammar
            )
        return parsers[language.grammar]

    def chunk(self, source: SourceFile) -> List[Chunk]:
        if not source.content.strip():
            logger.warning(f"File '{source.path}' is empty. Skipping chunking.")
            return []

        language = language_for_file(source.path)
        if language is None:
            return self._fallback.chunk(source)

        try:
            spans = self.extract_spans(source, language)
        except Exception as e:
            logger.warning(
                f"Syntax parsing failed for '{source.path}', "
                f"falling back to paragraph chunking: {e}"
            )
            return self._fallback.chunk(source)

        chunks = self._chunks_from_spans(source, spans)
        if not chunks:
            logger.debug(
                f"No definitions found in '{source.path}', using paragraph chunking."
            )
            return self._fallback.chunk(source)

        logger.debug(f"Created {len(chunks)} syntax chunks from file: {source.path}")
        return chunks

    def extract_spans(
        self, source: SourceFile, language: Optional[LanguageSpec] = None
    ) -> List[SyntaxSpan]:
        """
        Parses a file and returns its definition and import spans in document
        order.

        Raises:
            ValueError: If no grammar is registered for the file.
        """
        language = language or language_for_file(source.path)
        if language is None:
            raise ValueError(f"No grammar registered for '{source.path}'.")

        data = source.content.encode("utf-8")
        tree = self._parser(language).parse(data)

        spans = []
        stack = [(tree.root_node, None)]
        while stack:
            node, enclosing = stack.pop()
            child_enclosing = enclosing
            span = self._span_for(node, enclosing, language, data)
            if span is not None:
                spans.append(span)
                if span.kind == "class":
                    child_enclosing = span.class_name
            for child in reversed(node.children):
                stack.append((child, child_enclosing))
        return spans

    def _span_for(
        self, node, enclosing: Optional[str], language: LanguageSpec, data: bytes
    ) -> Optional[SyntaxSpan]:
        if node.type in language.functions:
            name = _field_text(node, "name", data)
            class_name = enclosing
            if node.type == "method_declaration" and language.grammar == "go":
                class_name = _go_receiver_type(node, data) or enclosing
            return _make_span("function", _outer(node), function=name, class_name=class_name)

        if node.type in language.classes:
            if node.type == "type_spec":
                type_node = node.child_by_field_name("type")
                if type_node is None or type_node.type not in (
                    "struct_type",
                    "interface_type",
                ):
                    return None
            field = "type" if node.type == "impl_item" else "name"
            name = _field_text(node, field, data)
            return _make_span("class", _outer(node), class_name=name)

        if node.type == "variable_declarator" and language.function_values:
            value = node.child_by_field_name("value")
            if value is not None and value.type in language.function_values:
                name = _field_text(node, "name", data)
                return _make_span("function", node, function=name, class_name=enclosing)

        if node.type in language.imports:
            return _make_span("import", node)

        return None

    def _chunks_from_spans(
        self, source: SourceFile, spans: List[SyntaxSpan]
    ) -> List[Chunk]:
        lines = source.content.split("\n")
        filename = os.path.basename(source.path)
        chunks = []
        for span in spans:
            if span.kind == "import":
                continue
            if span.start_line > len(lines):
                continue
            end = min(span.end_line, len(lines))
            content = "\n".join(lines[span.start_line - 1 : end])
            if not content.strip():
                continue
            chunks.append(
                Chunk(
                    content=content,
                    filename=filename,
                    start_line=span.start_line,
                    end_line=end,
                    function=span.function,
                    class_name=span.class_name,
                )
            )
        return chunks


def _outer(node):
    """Includes decorators in the span of a decorated Python definition."""
    parent = node.parent
    if parent is not None and parent.type == "decorated_definition":
        return parent
    return node


def _make_span(kind: str, node, function=None, class_name=None) -> SyntaxSpan:
    return SyntaxSpan(
        kind=kind,
        start_line=node.start_point[0] + 1,
        end_line=node.end_point[0] + 1,
        function=function,
        class_name=class_name,
    )


def _node_text(node, data: bytes) -> str:
    return data[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def _field_text(node, field: str, data: bytes) -> Optional[str]:
    child = node.child_by_field_name(field)
    if child is None:
        return None
    return _node_text(child, data)


def _go_receiver_type(node, data: bytes) -> Optional[str]:
    """Returns the receiver type name of a Go method, without pointer or type args."""
    receiver = node.child_by_field_name("receiver")
    if receiver is None:
        return None
    for param in receiver.named_children:
        type_node = param.child_by_field_name("type")
        if type_node is not None:
            text = _node_text(type_node, data).lstrip("*").strip()
            return text.split("[", 1)[0] or None
    return None
