"""
Configuration file for pytest.

This file adds the project's root directory to the Python path so that
pytest can find the 'codepipe' package without needing to install it, and
provides fakes for the remote embedding provider.
"""

import sys
import threading
from pathlib import Path

import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from codepipe.components.embedders import BaseEmbeddingProvider, EmbeddingClient
from codepipe.core.errors import EmbeddingTransientError
from codepipe.utils.rate_limiter import NullRateLimiter
from codepipe.utils.retry import RetryPolicy


def _fake_vector(text):
    """A deterministic vector that identifies the text it was made from."""
    return [float(len(text)), float(sum(ord(c) for c in text) % 9973), 1.0]


class FakeProvider(BaseEmbeddingProvider):
    """Records every call; fails the calls for which `fail_when(texts)` is true."""

    def __init__(self, fail_when=None, error=None):
        self.calls = []
        self.fail_when = fail_when
        self.error = error or EmbeddingTransientError("connection reset")
        self._lock = threading.Lock()

    def embed(self, texts):
        with self._lock:
            self.calls.append(list(texts))
        if self.fail_when is not None and self.fail_when(texts):
            raise self.error
        return [_fake_vector(text) for text in texts]


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_vector():
    return _fake_vector


@pytest.fixture
def provider_factory():
    return FakeProvider


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_client(sleep_recorder):
    """Builds an EmbeddingClient around a provider with no real back-off."""

    def _make(provider, batch_size=20, max_tokens=8192, rate_limiter=None):
        return EmbeddingClient(
            provider=provider,
            rate_limiter=rate_limiter or NullRateLimiter(),
            retry_policy=RetryPolicy(sleep=sleep_recorder),
            batch_size=batch_size,
            max_tokens=max_tokens,
        )

    return _make
