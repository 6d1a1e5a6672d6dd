# textgen_sdk/ai/metrics.py
# SPDX-License-Identifier: Apache-2.0
"""
Metrics interface (low-cardinality, no prompt text).

The adapter emits:
    observe(op=<capability>, ms=..., ok=...) once per backend call attempt,
                                             op is "completion", "chat" or "embed"
    counter(name="cache_hits")               once per cache hit
    counter(name="requests_total")           once per completed call
    counter(name="tokens_processed", value=) when usage is known
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol


class MetricsSink(Protocol):
    """
    Metrics collection protocol.

    Implementations MUST avoid prompt/response text in labels.
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


class InMemoryMetrics:
    """Collects observations and counter totals in memory (tests, demos)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.observations: List[Dict[str, Any]] = []
        self.counters: Dict[str, int] = {}

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        with self._lock:
            self.observations.append(
                {
                    "component": component,
                    "op": op,
                    "ms": ms,
                    "ok": ok,
                    "code": code,
                    "extra": dict(extra or {}),
                }
            )

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + int(value)


__all__ = ["MetricsSink", "NoopMetrics", "InMemoryMetrics"]
