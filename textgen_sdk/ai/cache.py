# textgen_sdk/ai/cache.py
# SPDX-License-Identifier: Apache-2.0
"""
Content-addressed response cache.

Keys are a sha256 over the canonical JSON form of the unified request, so two
structurally identical requests map to the same entry regardless of object
identity. Entries expire lazily: an expired entry is dropped on the read that
finds it, there is no sweeper.

The cache is an explicitly constructed instance injected into the adapter.
Access is guarded by a lock so a reader sees either a complete entry or no
entry.
"""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol


# =============================================================================
# Request hashing
# =============================================================================

def _canonical(obj: Any) -> Any:
    """Reduce a request to JSON-compatible primitives with stable ordering."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        out: Dict[str, Any] = {"__type__": type(obj).__name__}
        for f in dataclasses.fields(obj):
            if f.metadata.get("hash") is False:
                continue
            out[f.name] = _canonical(getattr(obj, f.name))
        return out
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {str(k): _canonical(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_canonical(v) for v in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(_canonical(v) for v in obj)
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return repr(obj)


def hash_request(request: Any, prompt_config: Optional[Any] = None) -> str:
    """
    Deterministic content hash of a unified request.

    Function executors are excluded; only name, description and schema of
    declared functions participate. When given, the call's PromptConfig
    (stop sequences) is hashed together with the request.
    """
    payload = _canonical(request)
    if prompt_config is not None:
        payload = {"request": payload, "prompt_config": _canonical(prompt_config)}
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# =============================================================================
# Cache implementations
# =============================================================================

class Cache(Protocol):
    """Cache interface used for completion / chat results."""
    async def get(self, key: str) -> Optional[Any]: ...
    async def set(self, key: str, value: Any, ttl_s: float) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class NoopCache:
    """No-op cache implementation."""
    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl_s: float) -> None:
        return None


class InMemoryTTLCache:
    """
    In-memory TTL cache for completion / chat results.

    Characteristics:
        - Per-process only; nothing is persisted.
        - set() replaces the entry for a key atomically; last writer wins.
        - get() never returns an entry at or past its expiry.
        - clock is injectable (defaults to time.monotonic).
    """

    def __init__(self, *, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._store: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if now >= entry.expires_at:
                del self._store[key]
                return None
            return entry.value

    async def set(self, key: str, value: Any, ttl_s: float) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + float(ttl_s))
        with self._lock:
            self._store[key] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


__all__ = [
    "hash_request",
    "Cache",
    "CacheEntry",
    "NoopCache",
    "InMemoryTTLCache",
]
