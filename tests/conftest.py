# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the adapter test suite.

Every adapter here runs over MockTransport, so dispatches are counted and no
network is touched. Time-dependent cache tests use FakeClock instead of
sleeping.
"""

from __future__ import annotations

import pytest

from textgen_sdk.ai import InMemoryMetrics, InMemoryTTLCache, InMemoryTraceSink
from textgen_sdk.mock import MockAIAdapter, MockTransport


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> InMemoryTTLCache:
    return InMemoryTTLCache(clock=clock)


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport(replies={"2+2=": "4"})


@pytest.fixture
def trace_sink() -> InMemoryTraceSink:
    return InMemoryTraceSink()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def adapter(transport, cache, trace_sink, metrics) -> MockAIAdapter:
    return MockAIAdapter(
        transport=transport,
        cache=cache,
        trace_sink=trace_sink,
        metrics=metrics,
    )
