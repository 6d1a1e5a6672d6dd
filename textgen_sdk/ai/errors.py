# textgen_sdk/ai/errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Normalized error taxonomy for the text-generation adapter layer.

Three families matter to callers:

- ConfigurationError:
    A required adapter hook is missing for both the requested capability
    and its fallback. Raised before anything is dispatched.
- APIError (and subclasses):
    Raised by a Transport. The core never catches these; they unwind to the
    caller untouched, carrying status / body / headers as surfaced.
- ParsingError:
    Not an exception. A malformed function-call payload is recorded on the
    trace response and the call still succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


class AIAdapterError(Exception):
    """
    Base exception for all adapter-layer errors.

    Attributes:
        message:
            Human-readable description (safe for logs).
        code:
            Upper-snake-case machine code.
        retry_after_ms:
            Optional backoff hint from the provider.
        details:
            Additional JSON-safe context.
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        if self.details:
            base += f" details={self.details}"
        return base


class ConfigurationError(AIAdapterError):
    """
    Adapter is missing a hook needed for the requested call.

    Examples:
        - completion requested, neither completion nor chat hooks present
        - streaming requested, no delta hook for the resolved capability
        - no model configured
    """
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)


class TraceError(AIAdapterError):
    """Trace step built before both request and response snapshots were set."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "TRACE_ERROR")
        super().__init__(message, **kwargs)


class APIError(AIAdapterError):
    """
    Transport / provider failure.

    Raised by Transport implementations; surfaced unchanged by the core.

    Attributes:
        status:
            HTTP status when known (0 for connection-level failures).
        body:
            Decoded response body when available.
        headers:
            Response headers when available.
        request:
            The native request that failed, when the transport attaches it.
    """
    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        request: Any = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("code", "API_ERROR")
        super().__init__(message, **kwargs)
        self.status = int(status or 0)
        self.body = body
        self.headers = dict(headers or {})
        self.request = request


class BadRequest(APIError):
    """Provider rejected the request shape or parameters (HTTP 400)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_REQUEST")
        kwargs.setdefault("status", 400)
        super().__init__(message, **kwargs)


class AuthError(APIError):
    """Authentication / authorization failure (HTTP 401/403)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "AUTH_ERROR")
        kwargs.setdefault("status", 401)
        super().__init__(message, **kwargs)


class NotSupported(APIError):
    """Requested resource or model is not available upstream (HTTP 404)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "NOT_SUPPORTED")
        kwargs.setdefault("status", 404)
        super().__init__(message, **kwargs)


class ResourceExhausted(APIError):
    """
    Quota or rate limit exhaustion (HTTP 429), or a local limiter rejection.

    Callers should honor retry_after_ms when present.
    """
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "RESOURCE_EXHAUSTED")
        kwargs.setdefault("status", 429)
        super().__init__(message, **kwargs)


class TransientNetwork(APIError):
    """Connection-level failure between transport and provider."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "TRANSIENT_NETWORK")
        super().__init__(message, **kwargs)


class Unavailable(APIError):
    """Provider unavailable / overloaded (HTTP 5xx)."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "UNAVAILABLE")
        kwargs.setdefault("status", 503)
        super().__init__(message, **kwargs)


class DeadlineExceeded(APIError):
    """
    Call exceeded its time budget.

    Emitted by SimpleDeadline or a transport-level timeout; treated as a
    transport failure.
    """
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "DEADLINE_EXCEEDED")
        super().__init__(message, **kwargs)


@dataclass(frozen=True)
class ParsingError:
    """Malformed function-call payload; recorded, never raised."""
    message: str
    value: str


__all__ = [
    "AIAdapterError",
    "ConfigurationError",
    "TraceError",
    "APIError",
    "BadRequest",
    "AuthError",
    "NotSupported",
    "ResourceExhausted",
    "TransientNetwork",
    "Unavailable",
    "DeadlineExceeded",
    "ParsingError",
]
