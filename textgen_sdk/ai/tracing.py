# textgen_sdk/ai/tracing.py
# SPDX-License-Identifier: Apache-2.0
"""
Trace recording.

One TraceStep per top-level call (streamed or not), never one per delta.
A step is built in two phases:

    request snapshot   attached as soon as the native request is built
    response snapshot  attached once the final result is known

Delivery goes to a TraceSink (best-effort: failures are logged and
swallowed) and then to an optional local observer, called synchronously.
"""

from __future__ import annotations

import copy
import dataclasses
import datetime as _dt
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from textgen_sdk.ai.errors import ParsingError, TraceError
from textgen_sdk.ai.types import (
    ChatRequest,
    ChatTurn,
    CompletionRequest,
    EmbedRequest,
    ModelConfig,
    ModelInfoWithProvider,
    TextResult,
    TokenUsage,
)

LOG = logging.getLogger(__name__)


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class FuncTrace:
    name: str
    args: str
    result: Optional[str] = None


@dataclass(frozen=True)
class TraceRequest:
    """What was asked. Function executors are reduced to names."""
    kind: str
    prompt: Optional[str] = None
    chat_prompt: Tuple[ChatTurn, ...] = ()
    system_prompt: Optional[str] = None
    texts: Tuple[str, ...] = ()
    model_config: Optional[ModelConfig] = None
    model_info: Optional[ModelInfoWithProvider] = None
    embed_model_info: Optional[ModelInfoWithProvider] = None
    functions: Tuple[str, ...] = ()
    function_call: Optional[str] = None


@dataclass(frozen=True)
class TraceResponse:
    """What came back, with timing in milliseconds."""
    results: Tuple[TextResult, ...] = ()
    model_usage: Optional[TokenUsage] = None
    embed_model_usage: Optional[TokenUsage] = None
    model_response_time_ms: Optional[float] = None
    embed_model_response_time_ms: Optional[float] = None
    functions: Tuple[FuncTrace, ...] = ()
    parsing_error: Optional[ParsingError] = None


@dataclass(frozen=True)
class TraceStep:
    trace_id: str
    request: TraceRequest
    response: TraceResponse
    created_at: str
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


# =============================================================================
# Builders (two-phase accumulation)
# =============================================================================

class TextRequestBuilder:
    def __init__(self) -> None:
        self._fields: dict = {}

    def set_completion_step(
        self,
        req: CompletionRequest,
        model_config: Optional[ModelConfig] = None,
        model_info: Optional[ModelInfoWithProvider] = None,
    ) -> "TextRequestBuilder":
        self._fields = dict(
            kind="completion",
            prompt=req.prompt,
            system_prompt=req.system_prompt,
            model_config=req.model_config or model_config,
            model_info=model_info,
            functions=tuple(f.name for f in req.functions),
            function_call=req.function_call,
        )
        return self

    def set_chat_step(
        self,
        req: ChatRequest,
        model_config: Optional[ModelConfig] = None,
        model_info: Optional[ModelInfoWithProvider] = None,
    ) -> "TextRequestBuilder":
        self._fields = dict(
            kind="chat",
            chat_prompt=tuple(req.chat_prompt),
            system_prompt=req.system_prompt,
            model_config=req.model_config or model_config,
            model_info=model_info,
            functions=tuple(f.name for f in req.functions),
            function_call=req.function_call,
        )
        return self

    def set_embed_step(
        self,
        req: EmbedRequest,
        embed_model_info: Optional[ModelInfoWithProvider] = None,
    ) -> "TextRequestBuilder":
        self._fields = dict(
            kind="embed",
            texts=tuple(req.texts),
            embed_model_info=embed_model_info,
        )
        return self

    def build(self) -> TraceRequest:
        if not self._fields:
            raise TraceError("request step not set")
        return TraceRequest(**self._fields)


class TextResponseBuilder:
    def __init__(self) -> None:
        self._results: Tuple[TextResult, ...] = ()
        self._model_usage: Optional[TokenUsage] = None
        self._embed_model_usage: Optional[TokenUsage] = None
        self._model_response_time_ms: Optional[float] = None
        self._embed_model_response_time_ms: Optional[float] = None
        self._functions: Tuple[FuncTrace, ...] = ()
        self._parsing_error: Optional[ParsingError] = None

    def set_results(self, results: Sequence[TextResult]) -> "TextResponseBuilder":
        self._results = tuple(copy.deepcopy(list(results)))
        return self

    def set_model_usage(self, usage: Optional[TokenUsage]) -> "TextResponseBuilder":
        self._model_usage = usage
        return self

    def set_embed_model_usage(self, usage: Optional[TokenUsage]) -> "TextResponseBuilder":
        self._embed_model_usage = usage
        return self

    def set_model_response_time(self, ms: Optional[float]) -> "TextResponseBuilder":
        self._model_response_time_ms = ms
        return self

    def set_embed_model_response_time(self, ms: Optional[float]) -> "TextResponseBuilder":
        self._embed_model_response_time_ms = ms
        return self

    def set_functions(self, functions: Sequence[FuncTrace]) -> "TextResponseBuilder":
        self._functions = tuple(functions)
        return self

    def set_parsing_error(self, err: Optional[ParsingError]) -> "TextResponseBuilder":
        self._parsing_error = err
        return self

    def build(self) -> TraceResponse:
        return TraceResponse(
            results=self._results,
            model_usage=self._model_usage,
            embed_model_usage=self._embed_model_usage,
            model_response_time_ms=self._model_response_time_ms,
            embed_model_response_time_ms=self._embed_model_response_time_ms,
            functions=self._functions,
            parsing_error=self._parsing_error,
        )


class TraceStepBuilder:
    def __init__(self) -> None:
        self._trace_id: Optional[str] = None
        self._session_id: Optional[str] = None
        self._request: Optional[TextRequestBuilder] = None
        self._response: Optional[TextResponseBuilder] = None

    def set_trace_id(self, trace_id: Optional[str]) -> "TraceStepBuilder":
        self._trace_id = trace_id
        return self

    def set_session_id(self, session_id: Optional[str]) -> "TraceStepBuilder":
        self._session_id = session_id
        return self

    def set_request(self, request: TextRequestBuilder) -> "TraceStepBuilder":
        self._request = request
        return self

    def set_response(self, response: TextResponseBuilder) -> "TraceStepBuilder":
        self._response = response
        return self

    @property
    def has_request(self) -> bool:
        return self._request is not None

    def build(self) -> TraceStep:
        if self._request is None or self._response is None:
            raise TraceError("trace not initialized")
        return TraceStep(
            trace_id=self._trace_id or uuid.uuid4().hex,
            session_id=self._session_id,
            request=self._request.build(),
            response=self._response.build(),
            created_at=_dt.datetime.now(_dt.timezone.utc).isoformat(),
        )


# =============================================================================
# Sinks
# =============================================================================

TraceObserver = Callable[[TraceStep], Any]


class TraceSink(Protocol):
    """Telemetry sink. Receives one TraceStep per completed call."""
    async def log(self, step: TraceStep) -> None: ...


class NoopTraceSink:
    async def log(self, step: TraceStep) -> None:
        return None


class LoggingTraceSink:
    """Writes each trace step as one JSON line to a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None, *, level: int = logging.INFO) -> None:
        self._logger = logger or logging.getLogger("textgen_sdk.trace")
        self._level = level

    async def log(self, step: TraceStep) -> None:
        if self._logger.isEnabledFor(self._level):
            self._logger.log(self._level, json.dumps(step.to_dict(), default=str, sort_keys=True))


class InMemoryTraceSink:
    """Keeps every delivered step; handy in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._steps: List[TraceStep] = []

    async def log(self, step: TraceStep) -> None:
        with self._lock:
            self._steps.append(step)

    @property
    def steps(self) -> List[TraceStep]:
        with self._lock:
            return list(self._steps)


class TraceRecorder:
    """Delivers finished trace steps."""

    def __init__(self, sink: Optional[TraceSink] = None) -> None:
        self._sink: TraceSink = sink or NoopTraceSink()

    async def record(self, step: TraceStep, observer: Optional[TraceObserver] = None) -> None:
        try:
            await self._sink.log(step)
        except Exception:
            LOG.warning("trace sink delivery failed for trace_id=%s", step.trace_id, exc_info=True)
        if observer is not None:
            observer(step)


__all__ = [
    "FuncTrace",
    "TraceRequest",
    "TraceResponse",
    "TraceStep",
    "TextRequestBuilder",
    "TextResponseBuilder",
    "TraceStepBuilder",
    "TraceObserver",
    "TraceSink",
    "NoopTraceSink",
    "LoggingTraceSink",
    "InMemoryTraceSink",
    "TraceRecorder",
]
