"""
Embedding components for the codepipe pipeline.

This module contains the providers that turn one batch of texts into vectors
with a single remote call, and the EmbeddingClient that sits in front of a
provider: it drops texts that cannot be embedded, partitions the rest into
fixed-size windows, submits the windows concurrently through a shared rate
limiter, retries failed windows, and reassembles the vectors by position.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
import logging
import os
from typing import Dict, List, Optional

import openai
from openai import OpenAI
from dotenv import load_dotenv

from ..core.errors import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingTransientError,
)
from ..utils.data_models import BatchEmbedding, BatchResult, Vector
from ..utils.rate_limiter import (
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_REQUESTS_PER_MINUTE,
    NullRateLimiter,
    RateLimiter,
)
from ..utils.retry import RetryPolicy

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_BATCH_SIZE = 20
# Maximum token limit for the embedding endpoint.
MAX_TOKEN_LIMIT = 8192
DEFAULT_API_TIMEOUT = 30.0


def approximate_tokens(text: str) -> int:
    return len(text) // 4


def trim_blank_lines(text: str) -> str:
    """
    Removes blank lines at the start and end of a text.

    Indentation and trailing spaces on non-blank lines are kept so that code
    structure survives; a text with no non-blank line trims to "".
    """
    lines = text.split("\n")
    start = 0
    end = len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


class BaseEmbeddingProvider(ABC):
    """Abstract base class for the remote embedding endpoint."""

    @abstractmethod
    def embed(self, texts: List[str]) -> List[Vector]:
        """
        Embeds a batch of texts with one remote call.

        Args:
            texts (List[str]): The texts to embed.

        Returns:
            List[Vector]: One vector per input text, in request order.

        Raises:
            EmbeddingAuthError: The credential was rejected.
            EmbeddingRateLimitError: The provider's rate limit was hit.
            EmbeddingTransientError: Any other failure of the call.
        """
        pass


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """
    A provider that uses the OpenAI API to generate embeddings.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_API_TIMEOUT,
    ):
        """
        Initializes the OpenAIEmbeddingProvider.

        Args:
            model_name (str): The name of the OpenAI model to use for embedding.
            api_key (str): The API key to authenticate with the OpenAI API.
                Defaults to the 'OPENAI_API_KEY' environment variable.
            timeout (float): Per-call timeout in seconds.

        Raises:
            EmbeddingAuthError: If no API key is available.
        """
        self.model_name = model_name
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise EmbeddingAuthError(
                "You need an OpenAI API key. Pass it as the 'api_key' argument or "
                "set the 'OPENAI_API_KEY' environment variable (a .env file works too)."
            )
        # Retrying is owned by RetryPolicy, not by the SDK.
        self.client = OpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)
        logger.info(f"Initialized OpenAIEmbeddingProvider with model '{self.model_name}'.")

    def embed(self, texts: List[str]) -> List[Vector]:
        try:
            response = self.client.embeddings.create(input=texts, model=self.model_name)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise EmbeddingAuthError(f"OpenAI authentication failed: {e}") from e
        except openai.RateLimitError as e:
            raise EmbeddingRateLimitError(f"OpenAI rate limit exceeded: {e}") from e
        except openai.OpenAIError as e:
            raise EmbeddingTransientError(f"OpenAI embedding request failed: {e}") from e

        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]


class EmbeddingClient:
    """
    Batches, rate-limits and retries embedding requests against a provider.

    Args:
        provider (BaseEmbeddingProvider): Performs the remote calls.
        rate_limiter (RateLimiter): Gates every remote call. Share one instance
            between all clients that talk to the same endpoint.
        retry_policy (RetryPolicy): Retry schedule for each window.
        batch_size (int): Default window size.
        max_tokens (int): Texts whose approximate token count exceeds this
            ceiling are skipped.
    """

    def __init__(
        self,
        provider: BaseEmbeddingProvider,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_tokens: int = MAX_TOKEN_LIMIT,
    ):
        self.provider = provider
        self.rate_limiter = rate_limiter or NullRateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self.max_tokens = max_tokens

    def embed_indexed(
        self, texts: List[str], batch_size: Optional[int] = None
    ) -> BatchEmbedding:
        """
        Embeds texts and returns the vectors keyed by input position.

        Windows run concurrently; a window that exhausts its retries loses its
        texts without affecting the others.

        Raises:
            EmbeddingError: If no text is embeddable, or if no window succeeded.
        """
        batch_size = batch_size if batch_size and batch_size > 0 else self.batch_size
        result = BatchEmbedding()

        positions = []
        valid_texts = []
        for position, text in enumerate(texts):
            trimmed = trim_blank_lines(text)
            if not trimmed:
                result.skipped.append(position)
                continue
            tokens = approximate_tokens(trimmed)
            if tokens > self.max_tokens:
                logger.warning(
                    f"Text too long for embedding API, skipping ({tokens} approximate tokens)"
                )
                result.skipped.append(position)
                continue
            positions.append(position)
            valid_texts.append(trimmed)

        if result.skipped:
            logger.warning(
                f"Skipped {len(result.skipped)} texts due to empty content or "
                f"exceeding token limit"
            )
        if not valid_texts:
            raise EmbeddingError("no valid texts to embed")

        windows = [
            BatchResult(start=start, texts=valid_texts[start : start + batch_size])
            for start in range(0, len(valid_texts), batch_size)
        ]
        if len(windows) == 1:
            self._run_window(windows[0])
        else:
            # More threads than limiter permits would only wait on the limiter.
            max_workers = min(len(windows), self.rate_limiter.max_concurrent or len(windows))
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                list(executor.map(self._run_window, windows))

        succeeded = 0
        for window in windows:
            if not window.ok:
                result.errors.append(window.error)
                result.failed.extend(
                    positions[window.start : window.start + len(window.texts)]
                )
                continue
            succeeded += 1
            for offset, vector in enumerate(window.vectors):
                position = positions[window.start + offset]
                if vector:
                    result.vectors[position] = vector
                else:
                    result.failed.append(position)

        if succeeded == 0:
            first = result.errors[0]
            raise EmbeddingError(f"all embedding batches failed: {first}") from first
        if not result.vectors:
            raise EmbeddingError("failed to generate embedding")

        if result.lost:
            logger.warning(
                f"Only generated {len(result.vectors)}/{len(valid_texts)} "
                f"embeddings successfully ({result.lost} lost)"
            )
        return result

    def embed_batch(
        self, texts: List[str], batch_size: Optional[int] = None
    ) -> Dict[str, Vector]:
        """
        Embeds texts and returns a mapping from each original text to its
        vector. Texts that were skipped or lost have no entry; identical
        texts share one entry.
        """
        result = self.embed_indexed(texts, batch_size)
        return {texts[position]: vector for position, vector in result.vectors.items()}

    def embed_one(self, text: str) -> Vector:
        embeddings = self.embed_batch([text], batch_size=1)
        if text not in embeddings:
            raise EmbeddingError("failed to generate embedding")
        return embeddings[text]

    def _run_window(self, window: BatchResult):
        description = f"embedding batch at offset {window.start}"
        try:
            window.vectors = self.retry_policy.call(
                self._call_provider, window.texts, description=description
            )
        except EmbeddingError as e:
            logger.error(f"Abandoning {description} ({len(window.texts)} texts): {e}")
            window.error = e

    def _call_provider(self, texts: List[str]) -> List[Vector]:
        with self.rate_limiter.permit():
            vectors = self.provider.embed(texts)
        if len(vectors) != len(texts):
            raise EmbeddingTransientError(
                f"provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    def test_connection(self):
        """Validates the provider and credential with a one-text request."""
        logger.info(f"Testing connection for {self.provider.__class__.__name__}")
        try:
            self.provider.embed(["test"])
            logger.info("Connection to embedding provider successful.")
        except EmbeddingError as e:
            logger.error(f"Failed to reach embedding provider: {e}", exc_info=True)
            raise


class OpenAIEmbedder(EmbeddingClient):
    """
    An EmbeddingClient wired to the OpenAI API from configuration values.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = DEFAULT_API_TIMEOUT,
        max_attempts: int = 3,
        max_tokens: int = MAX_TOKEN_LIMIT,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        provider = OpenAIEmbeddingProvider(
            model_name=model_name, api_key=api_key, timeout=timeout
        )
        super().__init__(
            provider=provider,
            rate_limiter=rate_limiter
            or RateLimiter(
                requests_per_minute=requests_per_minute,
                max_concurrent=max_concurrent,
            ),
            retry_policy=RetryPolicy(max_attempts=max_attempts),
            batch_size=batch_size,
            max_tokens=max_tokens,
        )
        self.model_name = model_name
