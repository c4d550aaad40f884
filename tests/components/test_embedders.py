"""
Tests for the embedding provider and the batching client.
"""

import itertools
import threading
from types import SimpleNamespace
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from codepipe.components.embedders import (
    EmbeddingClient,
    OpenAIEmbeddingProvider,
    trim_blank_lines,
)
from codepipe.core.errors import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingTransientError,
)
from codepipe.utils.rate_limiter import NullRateLimiter, RateLimiter


class CountingLimiter(NullRateLimiter):
    def __init__(self):
        super().__init__()
        self.acquired = 0
        self.released = 0
        self._lock = threading.Lock()

    def acquire(self):
        super().acquire()
        with self._lock:
            self.acquired += 1

    def release(self):
        super().release()
        with self._lock:
            self.released += 1


def test_trim_blank_lines_keeps_indentation():
    assert trim_blank_lines("\n  \n    x = 1\n  y\n\n") == "    x = 1\n  y"
    assert trim_blank_lines(" \n\t\n") == ""


def test_texts_are_partitioned_into_windows(provider_factory, make_client, fake_vector):
    provider = provider_factory()
    client = make_client(provider)
    texts = ["a", "b", "c", "d", "e"]

    result = client.embed_indexed(texts, batch_size=2)

    assert sorted(len(call) for call in provider.calls) == [1, 2, 2]
    assert result.vectors == {i: fake_vector(t) for i, t in enumerate(texts)}
    assert result.lost == 0


def test_default_batch_size_is_used(provider_factory, make_client):
    provider = provider_factory()
    client = make_client(provider, batch_size=3)

    client.embed_indexed([str(i) for i in range(7)])

    assert sorted(len(call) for call in provider.calls) == [1, 3, 3]


def test_empty_and_oversized_texts_are_skipped(provider_factory, make_client):
    provider = provider_factory()
    client = make_client(provider, max_tokens=10)
    texts = ["keep", "  \n\n ", "x" * 100, "also keep"]

    result = client.embed_indexed(texts)

    assert sorted(result.vectors) == [0, 3]
    assert result.skipped == [1, 2]
    assert provider.calls == [["keep", "also keep"]]


def test_no_valid_texts_raises(provider_factory, make_client):
    provider = provider_factory()
    client = make_client(provider)

    with pytest.raises(EmbeddingError):
        client.embed_indexed(["", "   "])
    assert provider.calls == []


def test_failed_window_does_not_abort_siblings(provider_factory, make_client):
    provider = provider_factory(fail_when=lambda texts: any("bad" in t for t in texts))
    client = make_client(provider)

    result = client.embed_indexed(["a", "b", "bad", "c"], batch_size=2)

    assert sorted(result.vectors) == [0, 1]
    assert sorted(result.failed) == [2, 3]
    assert result.lost == 2
    assert len(result.errors) == 1
    # The failing window is tried three times, the good one once.
    assert len(provider.calls) == 4


def test_all_windows_failing_raises(provider_factory, make_client):
    provider = provider_factory(fail_when=lambda texts: True)
    client = make_client(provider)

    with pytest.raises(EmbeddingError, match="all embedding batches failed"):
        client.embed_indexed(["a", "b", "c"], batch_size=1)


def test_transient_failures_use_standard_backoff(provider_factory, make_client, sleep_recorder):
    attempts = {"count": 0}

    def fail_twice(texts):
        attempts["count"] += 1
        return attempts["count"] <= 2

    provider = provider_factory(fail_when=fail_twice)
    client = make_client(provider)

    result = client.embed_indexed(["a"])

    assert 0 in result.vectors
    assert sleep_recorder.delays == [1.0, 2.0]


def test_rate_limit_failures_back_off_longer(provider_factory, make_client, sleep_recorder):
    provider = provider_factory(
        fail_when=lambda texts: True, error=EmbeddingRateLimitError("429")
    )
    client = make_client(provider)

    with pytest.raises(EmbeddingError):
        client.embed_indexed(["a"])

    assert sleep_recorder.delays == [8.0, 16.0]
    assert len(provider.calls) == 3


def test_every_call_goes_through_the_rate_limiter(provider_factory, make_client):
    calls = itertools.count(1)

    def fail_first(texts):
        return next(calls) == 1

    limiter = CountingLimiter()
    provider = provider_factory(fail_when=fail_first)
    client = make_client(provider, rate_limiter=limiter)

    client.embed_indexed(["a", "b", "c"], batch_size=1)

    assert limiter.acquired == len(provider.calls) == 4
    assert limiter.released == limiter.acquired
    assert limiter.in_flight == 0


def test_embed_batch_keys_by_original_text(provider_factory, make_client, fake_vector):
    provider = provider_factory()
    client = make_client(provider)
    original = "\n\nfunc main() {}\n\n"

    embeddings = client.embed_batch([original, "other"])

    assert set(embeddings) == {original, "other"}
    assert embeddings[original] == fake_vector("func main() {}")
    assert provider.calls == [["func main() {}", "other"]]


def test_identical_texts_keep_their_own_positions(provider_factory, make_client):
    client = make_client(provider_factory())

    result = client.embed_indexed(["same", "same", "different"])

    assert sorted(result.vectors) == [0, 1, 2]


def test_embed_one(provider_factory, make_client, fake_vector):
    client = make_client(provider_factory())

    assert client.embed_one("hello") == fake_vector("hello")


def test_embed_one_raises_for_blank_text(provider_factory, make_client):
    client = make_client(provider_factory())

    with pytest.raises(EmbeddingError):
        client.embed_one("   ")


def test_mismatched_vector_count_is_retried_then_abandoned(make_client, sleep_recorder):
    provider = MagicMock()
    provider.embed.return_value = [[0.1, 0.2]]
    client = make_client(provider)

    with pytest.raises(EmbeddingError):
        client.embed_indexed(["a", "b"])

    assert provider.embed.call_count == 3
    assert sleep_recorder.delays == [1.0, 2.0]


def test_empty_vectors_are_never_returned(make_client):
    provider = MagicMock()
    provider.embed.return_value = [[0.5], []]
    client = make_client(provider)

    result = client.embed_indexed(["a", "b"])

    assert result.vectors == {0: [0.5]}
    assert result.failed == [1]


def _status_error(cls, status):
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status, request=request)
    return cls(f"status {status}", response=response, body=None)


def test_openai_provider_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(EmbeddingAuthError):
        OpenAIEmbeddingProvider()


def test_openai_provider_returns_vectors_in_request_order():
    provider = OpenAIEmbeddingProvider(api_key="sk-test")
    provider.client = MagicMock()
    provider.client.embeddings.create.return_value = SimpleNamespace(
        data=[
            SimpleNamespace(index=1, embedding=[0.3, 0.4]),
            SimpleNamespace(index=0, embedding=[0.1, 0.2]),
        ]
    )

    vectors = provider.embed(["first", "second"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    provider.client.embeddings.create.assert_called_once_with(
        input=["first", "second"], model="text-embedding-3-small"
    )


@pytest.mark.parametrize(
    "error, expected",
    [
        (_status_error(openai.RateLimitError, 429), EmbeddingRateLimitError),
        (_status_error(openai.AuthenticationError, 401), EmbeddingAuthError),
        (_status_error(openai.InternalServerError, 500), EmbeddingTransientError),
        (
            openai.APIConnectionError(
                request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
            ),
            EmbeddingTransientError,
        ),
    ],
)
def test_openai_provider_translates_errors(error, expected):
    provider = OpenAIEmbeddingProvider(api_key="sk-test")
    provider.client = MagicMock()
    provider.client.embeddings.create.side_effect = error

    with pytest.raises(expected):
        provider.embed(["text"])


def test_test_connection_propagates_provider_errors(provider_factory):
    provider = provider_factory(
        fail_when=lambda texts: True, error=EmbeddingAuthError("invalid key")
    )
    client = EmbeddingClient(provider)

    with pytest.raises(EmbeddingAuthError):
        client.test_connection()


def test_window_threads_are_capped_by_limiter_permits(provider_factory, make_client):
    provider = provider_factory()
    limiter = RateLimiter(requests_per_minute=600000, max_concurrent=2)
    client = make_client(provider, rate_limiter=limiter)

    with patch(
        "codepipe.components.embedders.ThreadPoolExecutor", wraps=ThreadPoolExecutor
    ) as executor:
        result = client.embed_indexed([str(i) for i in range(5)], batch_size=1)

    assert executor.call_args.kwargs["max_workers"] == 2
    assert sorted(result.vectors) == [0, 1, 2, 3, 4]
    assert limiter.in_flight == 0


def test_window_threads_without_a_permit_cap(provider_factory, make_client):
    client = make_client(provider_factory())

    with patch(
        "codepipe.components.embedders.ThreadPoolExecutor", wraps=ThreadPoolExecutor
    ) as executor:
        client.embed_indexed([str(i) for i in range(3)], batch_size=1)

    assert executor.call_args.kwargs["max_workers"] == 3
