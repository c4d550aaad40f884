"""
Source components for the codepipe pipeline.

This module discovers the code files to index. A source walks a directory
tree, keeps files whose extension is on an allow-list, and never descends into
noise directories such as version-control metadata or dependency folders.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
import logging
import os
from pathlib import Path
import threading
from typing import Iterable, List, Optional

from ..core.errors import ReadError, ScanError
from ..utils.data_models import SourceFile

logger = logging.getLogger(__name__)

# Common code file extensions to process.
CODE_EXTENSIONS = frozenset(
    {
        ".py",
        ".js",
        ".ts",
        ".cpp",
        ".go",
        ".java",
        ".lua",
        ".jsx",
        ".tsx",
        ".html",
        ".css",
        ".php",
        ".rb",
        ".rs",
        ".cs",
        ".swift",
        ".kt",
    }
)

# Directories that are never descended into.
SKIP_DIRS = frozenset(
    {
        ".git",
        "node_modules",
        "venv",
        "__pycache__",
        "dist",
        "build",
        ".idea",
        ".vscode",
    }
)


class BaseSource(ABC):
    """Abstract base class for all source components."""

    @abstractmethod
    def discover(self) -> List[str]:
        """
        Returns every file path the pipeline should index.

        Raises:
            ScanError: If the source cannot be fully enumerated. Partial
                results are never returned.
        """
        pass

    @abstractmethod
    def test_connection(self):
        """
        Tests that the source is accessible.
        """
        pass


class LocalCodeSource(BaseSource):
    """
    Discovers code files on the local filesystem.

    The serial walk uses `os.walk`; the parallel walk descends into
    subdirectories concurrently, bounded by `max_workers`.
    """

    def __init__(
        self,
        path: str = ".",
        extensions: Optional[Iterable[str]] = None,
        skip_dirs: Optional[Iterable[str]] = None,
        parallel: bool = False,
        max_workers: int = 0,
    ):
        self.path = Path(path)
        self.extensions = frozenset(extensions) if extensions else CODE_EXTENSIONS
        self.skip_dirs = frozenset(skip_dirs) if skip_dirs else SKIP_DIRS
        self.parallel = parallel
        self.max_workers = max_workers if max_workers > 0 else (os.cpu_count() or 1)
        logger.debug(
            f"Initialized LocalCodeSource with path='{self.path}', "
            f"parallel={parallel}, max_workers={self.max_workers}"
        )

    def _is_code_file(self, name: str) -> bool:
        return os.path.splitext(name)[1] in self.extensions

    def discover(self) -> List[str]:
        logger.info(f"Scanning for code files in '{self.path}'.")
        if not self.path.is_dir():
            raise ScanError(f"Source path '{self.path}' is not a valid directory.")

        if self.parallel:
            files = self._discover_parallel()
        else:
            files = self._discover_serial()

        files.sort()
        logger.info(f"Found {len(files)} code files in '{self.path}'.")
        return files

    def _discover_serial(self) -> List[str]:
        def on_error(error: OSError):
            raise ScanError(f"Error scanning directory: {error}") from error

        files = []
        for dirpath, dirnames, filenames in os.walk(self.path, onerror=on_error):
            dirnames[:] = [d for d in dirnames if d not in self.skip_dirs]
            for name in filenames:
                if self._is_code_file(name):
                    files.append(os.path.join(dirpath, name))
        return files

    def _discover_parallel(self) -> List[str]:
        files = []
        errors = []
        pending = []
        lock = threading.Lock()
        slots = threading.Semaphore(self.max_workers)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:

            def visit(directory: str):
                try:
                    with os.scandir(directory) as it:
                        entries = list(it)
                except OSError as e:
                    with lock:
                        errors.append(e)
                    return

                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        if entry.name in self.skip_dirs:
                            continue
                        if slots.acquire(blocking=False):
                            future = executor.submit(visit_in_slot, entry.path)
                            with lock:
                                pending.append(future)
                        else:
                            visit(entry.path)
                    elif entry.is_file() and self._is_code_file(entry.name):
                        with lock:
                            files.append(entry.path)

            def visit_in_slot(directory: str):
                try:
                    visit(directory)
                finally:
                    slots.release()

            visit(str(self.path))

            # Futures are appended before the task that submits them finishes,
            # so waiting in list order observes every descendant task.
            index = 0
            while True:
                with lock:
                    if index >= len(pending):
                        break
                    future = pending[index]
                future.result()
                index += 1

        if errors:
            raise ScanError(f"Error scanning directory: {errors[0]}") from errors[0]
        return files

    def test_connection(self):
        logger.info(f"Testing connection for LocalCodeSource at path: {self.path}")
        if not self.path.exists():
            raise FileNotFoundError(f"Source path '{self.path}' does not exist.")
        if not self.path.is_dir():
            raise NotADirectoryError(f"Source path '{self.path}' is not a directory.")
        logger.info("Connection to LocalCodeSource successful.")


def read_source_file(path: str) -> SourceFile:
    """Reads one file for indexing, raising ReadError if it cannot be read."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError as e:
        raise ReadError(path, str(e)) from e
    return SourceFile(path=path, content=content)
