"""
Core pipeline orchestration module.

This module runs one indexing pass: it discovers the code files of a source,
fans them out to a fixed pool of worker threads that chunk and embed each
file, fans the per-file records and errors back in through two collectors,
and hands the merged result set to a sink.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
import logging
import os
import queue
import threading
import time
from typing import List, Optional

from tqdm import tqdm

from ..components.sources import read_source_file
from ..utils.config import load_config, default_config
from ..utils.data_models import CodeRecord
from .errors import (
    CodePipeError,
    EmbeddingAuthError,
    EmbeddingError,
    FileProcessingError,
    IndexingError,
    PersistError,
    ScanError,
)
from .factory import (
    build_component,
    SOURCE_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    SINK_REGISTRY,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKER_MULTIPLIER = 4
DEFAULT_ERROR_PREVIEW = 10

# Marks the end of a queue; every consumer stops when it reads it.
_CLOSED = object()


class RunState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunSummary:
    """Totals of one indexing run."""

    files: int
    records: List[CodeRecord] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    elapsed: float = 0.0

    def error_lines(self, limit: int = DEFAULT_ERROR_PREVIEW) -> List[str]:
        """The first `limit` errors, then a count of the remainder."""
        lines = [f"- {error}" for error in self.errors[:limit]]
        remaining = len(self.errors) - limit
        if remaining > 0:
            lines.append(f"- ... and {remaining} more errors")
        return lines


class IndexingRun:
    """
    One pass of the indexing pipeline over a source.

    The run moves through IDLE -> DISCOVERING -> DISPATCHING -> DRAINING ->
    PERSISTING -> DONE. Discovery failures, empty sources, a rejected
    embedding credential, runs that produce no records, and sink failures end
    in FAILED and raise. The credential is checked once, before dispatch.

    Args:
        source: Discovers file paths (`discover()`).
        chunker: Splits one SourceFile into chunks (`chunk()`).
        embedder: An EmbeddingClient (`embed_indexed()`).
        sink: Persists the final records (`sink()`).
        workers (Optional[int]): Worker thread count. Defaults to the CPU count
            times `worker_multiplier`.
        show_progress (bool): Show a progress bar while files are processed.
        error_preview (int): How many errors the summary prints in full.
    """

    def __init__(
        self,
        source,
        chunker,
        embedder,
        sink,
        workers: Optional[int] = None,
        worker_multiplier: int = DEFAULT_WORKER_MULTIPLIER,
        show_progress: bool = True,
        error_preview: int = DEFAULT_ERROR_PREVIEW,
    ):
        self.source = source
        self.chunker = chunker
        self.embedder = embedder
        self.sink = sink
        self.workers = workers or (os.cpu_count() or 1) * worker_multiplier
        self.show_progress = show_progress
        self.error_preview = error_preview
        self.state = RunState.IDLE
        self._progress_lock = threading.Lock()

    def _set_state(self, state: RunState):
        logger.debug(f"Indexing run: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, error: CodePipeError) -> CodePipeError:
        self._set_state(RunState.FAILED)
        return error

    def process_file(self, path: str) -> List[CodeRecord]:
        """
        Reads, chunks and embeds one file.

        Returns:
            List[CodeRecord]: One record per chunk that received a vector, in
                chunk order. Empty when the file produced no chunks.
        """
        source_file = read_source_file(path)
        chunks = self.chunker.chunk(source_file)
        if not chunks:
            return []

        embedded = self.embedder.embed_indexed([chunk.content for chunk in chunks])

        # Vectors are matched to chunks by position, never by text, so that
        # identical chunks keep their own vectors.
        records = [
            CodeRecord(file=path, content=chunks[position].content, embedding=vector)
            for position, vector in sorted(embedded.vectors.items())
        ]
        missing = len(chunks) - len(records)
        if missing:
            logger.warning(f"Failed to get embedding for {missing} chunks in {path}")
        return records

    def _worker(self, work: queue.Queue, results: queue.Queue, errors: queue.Queue, progress):
        while True:
            path = work.get()
            if path is _CLOSED:
                return
            try:
                records = self.process_file(path)
            except CodePipeError as e:
                errors.put(FileProcessingError(path, e))
            except Exception as e:
                logger.error(f"Unexpected error processing {path}: {e}", exc_info=True)
                errors.put(FileProcessingError(path, e))
            else:
                results.put(records)
            finally:
                with self._progress_lock:
                    progress.update(1)

    @staticmethod
    def _collect(channel: queue.Queue) -> list:
        collected = []
        while True:
            item = channel.get()
            if item is _CLOSED:
                return collected
            collected.append(item)

    def _dispatch(self, files: List[str]):
        """Runs the worker pool over `files` and returns (record batches, errors)."""
        workers = max(1, min(self.workers, len(files)))
        logger.info(f"Using {workers} workers for parallel processing.")

        work = queue.Queue()
        for path in files:
            work.put(path)
        for _ in range(workers):
            work.put(_CLOSED)

        # Each file yields exactly one item on one of the two queues, so both
        # are sized to the file count plus the closing marker.
        results = queue.Queue(maxsize=len(files) + 1)
        errors = queue.Queue(maxsize=len(files) + 1)

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="collector") as collectors:
            batches_future = collectors.submit(self._collect, results)
            errors_future = collectors.submit(self._collect, errors)
            try:
                with tqdm(
                    total=len(files),
                    desc="Processing files",
                    unit="file",
                    disable=not self.show_progress,
                ) as progress:
                    with ThreadPoolExecutor(
                        max_workers=workers, thread_name_prefix="worker"
                    ) as pool:
                        futures = [
                            pool.submit(self._worker, work, results, errors, progress)
                            for _ in range(workers)
                        ]
                        for future in futures:
                            future.result()
            finally:
                self._set_state(RunState.DRAINING)
                results.put(_CLOSED)
                errors.put(_CLOSED)
            return batches_future.result(), errors_future.result()

    def _report(self, summary: RunSummary):
        if summary.errors:
            logger.warning(f"Encountered {len(summary.errors)} errors during processing:")
            for line in summary.error_lines(self.error_preview):
                logger.warning(line)
        if summary.records:
            logger.info(
                f"Successfully processed {len(summary.records)} code chunks "
                f"from {summary.files} files"
            )

    def run(self) -> RunSummary:
        """
        Executes the run and returns its summary.

        Raises:
            ScanError: If discovery failed.
            EmbeddingAuthError: If the embedding provider rejects the credential.
            IndexingError: If no files were found or no records were produced.
            PersistError: If the sink failed.
        """
        start_time = time.monotonic()

        self._set_state(RunState.DISCOVERING)
        try:
            files = self.source.discover()
        except ScanError as e:
            raise self._fail(e)
        if not files:
            raise self._fail(IndexingError("No code files found in the specified directory"))
        logger.info(f"Found {len(files)} code files to process")

        # A rejected credential fails every window, so it is checked once here.
        try:
            self.embedder.test_connection()
        except EmbeddingAuthError as e:
            raise self._fail(e)
        except EmbeddingError as e:
            logger.warning(f"Embedding provider check failed, continuing: {e}")

        self._set_state(RunState.DISPATCHING)
        batches, errors = self._dispatch(files)

        records = [record for batch in batches for record in batch]
        summary = RunSummary(files=len(files), records=records, errors=errors)
        self._report(summary)
        if not records:
            raise self._fail(IndexingError("No code chunks were processed successfully"))

        self._set_state(RunState.PERSISTING)
        logger.info(f"Sinking data to: {self.sink.__class__.__name__}")
        try:
            self.sink.sink(records)
        except PersistError as e:
            raise self._fail(e)

        self._set_state(RunState.DONE)
        summary.elapsed = time.monotonic() - start_time
        logger.info(f"Total indexing time: {summary.elapsed:.2f}s")
        return summary


def build_run(config: dict) -> IndexingRun:
    """Builds all pipeline components from a validated configuration."""
    logger.info("Building pipeline components...")
    try:
        source = build_component(config["source"], SOURCE_REGISTRY)
        chunker = build_component(config["chunker"], CHUNKER_REGISTRY)
        embedder = build_component(config["embedder"], EMBEDDER_REGISTRY)
        sink = build_component(config["sink"], SINK_REGISTRY)
        logger.info("All components built successfully.")
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Error building components: {e}", exc_info=True)
        raise

    return IndexingRun(
        source,
        chunker,
        embedder,
        sink,
        workers=config.get("workers"),
        worker_multiplier=config.get("worker_multiplier", DEFAULT_WORKER_MULTIPLIER),
        show_progress=config.get("show_progress", True),
        error_preview=config.get("error_preview", DEFAULT_ERROR_PREVIEW),
    )


def run_pipeline(config_path: str) -> RunSummary:
    """
    Runs the indexing pipeline described by a YAML configuration file.
    """
    logger.info(f"codepipe pipeline starting with config: {config_path}")
    config = load_config(config_path)
    summary = build_run(config).run()
    logger.info("codepipe pipeline completed successfully.")
    return summary


def index_directory(directory: str, **overrides) -> RunSummary:
    """
    Indexes `directory` with the default components.

    Keyword arguments are passed to `default_config` (chunker, max_chunk_size,
    sink, output, batch_size, workers, parallel_scan, show_progress).
    """
    logger.info(f"Indexing codebase at: {directory}")
    config = default_config(directory, **overrides)
    return build_run(config).run()
