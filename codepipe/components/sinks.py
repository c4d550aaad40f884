"""
Data sink components for the codepipe pipeline.

This module provides classes for writing the final result set of an indexing
run (file, chunk content and embedding) to a durable destination. Every sink
replaces the previous run's output instead of merging into it.
"""

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import List, Optional

import redis

from ..core.errors import PersistError
from ..utils.data_models import CodeRecord

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDINGS_FILE = "embeddings.json"
DEFAULT_INDEX_KEY = "codebase:chunks"


class BaseSink(ABC):
    """Abstract base class for all data sink components."""

    @abstractmethod
    def sink(self, records: List[CodeRecord]):
        """
        Persists the full result set of a run, replacing any previous one.

        Args:
            records (List[CodeRecord]): The records to save.

        Raises:
            PersistError: If the records could not be written.
        """
        pass

    @abstractmethod
    def test_connection(self):
        """
        Tests the connection to the data sink to ensure it is accessible.

        Raises:
            Exception: If the connection test fails.
        """
        pass


class JSONFileSink(BaseSink):
    """
    A sink that writes all records to one indented UTF-8 JSON array.

    The document is written to a temporary file next to the target and then
    moved over it, so readers never see a half-written file.
    """

    def __init__(self, path: str = DEFAULT_EMBEDDINGS_FILE, indent: int = 2):
        self.path = Path(path)
        self.indent = indent
        logger.debug(f"Initialized JSONFileSink with path='{self.path}'")

    def sink(self, records: List[CodeRecord]):
        logger.info(f"Saving {len(records)} records to '{self.path}'")
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(
                    [record.to_dict() for record in records],
                    f,
                    indent=self.indent,
                    ensure_ascii=False,
                )
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise PersistError(f"Failed to write '{self.path}': {e}") from e

        logger.info(f"Embeddings saved to '{self.path}'.")

    def test_connection(self):
        logger.info(f"Testing connection for JSONFileSink at path: {self.path}")
        directory = self.path.parent
        if directory.exists() and not os.access(directory, os.W_OK):
            raise PermissionError(f"Directory '{directory}' is not writable.")
        logger.info("Connection to JSONFileSink successful.")


class RedisSink(BaseSink):
    """
    A sink that stores each record as a Redis hash and tracks the hashes in
    an index set.

    Keys have the form `chunk:<file>:<counter>`. Before writing, every key
    listed in the index set is deleted together with the set itself, in the
    same transaction as the new writes.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        index_key: str = DEFAULT_INDEX_KEY,
    ):
        self.host = host
        self.port = port
        self.index_key = index_key
        self.client = redis.Redis(host=host, port=port, db=db, password=password)
        logger.debug(
            f"Initialized RedisSink with host='{host}', port='{port}', index='{index_key}'"
        )

    def _clear_previous_run(self, pipe):
        """Queues the deletion of the previous run's hashes and index set."""
        previous = self.client.smembers(self.index_key)
        if previous:
            logger.info(
                f"Deleting {len(previous)} records from the previous run of '{self.index_key}'."
            )
            pipe.delete(*previous)
        pipe.delete(self.index_key)

    def sink(self, records: List[CodeRecord]):
        logger.info(
            f"Saving {len(records)} records to Redis index '{self.index_key}' at {self.host}:{self.port}"
        )
        try:
            # The clear and the write commit together in one MULTI/EXEC.
            pipe = self.client.pipeline(transaction=True)
            self._clear_previous_run(pipe)
            for counter, record in enumerate(records):
                chunk_id = f"chunk:{record.file}:{counter}"
                pipe.hset(
                    chunk_id,
                    mapping={
                        "file": record.file,
                        "content": record.content,
                        "embedding": json.dumps(list(record.embedding)),
                    },
                )
                pipe.sadd(self.index_key, chunk_id)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            raise PersistError(f"Error writing to Redis: {e}") from e

        logger.info(f"Successfully stored {len(records)} code chunks in Redis.")

    def test_connection(self):
        logger.info(f"Testing connection for RedisSink at {self.host}:{self.port}")
        try:
            self.client.ping()
            logger.info("Connection to Redis successful.")
        except redis.exceptions.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            raise ConnectionError(f"Failed to connect to Redis: {e}")
