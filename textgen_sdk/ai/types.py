# textgen_sdk/ai/types.py
# SPDX-License-Identifier: Apache-2.0
"""
Unified data model shared by every backend adapter.

Requests are frozen once built for a call. TextResponse is mutable only while
the stream merger accumulates deltas; everywhere else treat it as a value.
A streaming delta uses the same TextResponse shape but carries only the
newest fragment.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, Union


# =============================================================================
# Model configuration / info
# =============================================================================

@dataclass(frozen=True)
class ModelConfig:
    """Sampling and output configuration for one text-generation call."""
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    n: Optional[int] = None
    stream: Optional[bool] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    suffix: Optional[str] = None
    logit_bias: Optional[Mapping[str, float]] = None


@dataclass(frozen=True)
class ModelInfo:
    """
    Static pricing / limits for a named model.

    Attributes:
        name:
            Model identifier as the provider knows it.
        currency:
            Currency for the per-1K token costs.
        prompt_token_cost_per_1k / completion_token_cost_per_1k:
            Cost per thousand tokens.
        max_tokens:
            Context window, when known.
        character_is_token:
            Provider bills characters rather than tokens.
    """
    name: str
    currency: str = "usd"
    prompt_token_cost_per_1k: float = 0.0
    completion_token_cost_per_1k: float = 0.0
    max_tokens: Optional[int] = None
    character_is_token: bool = False

    def with_provider(self, provider: str) -> "ModelInfoWithProvider":
        return ModelInfoWithProvider(
            provider=provider,
            **{f.name: getattr(self, f.name) for f in dataclasses.fields(self)},
        )


@dataclass(frozen=True)
class ModelInfoWithProvider(ModelInfo):
    provider: str = ""


# =============================================================================
# Usage accounting
# =============================================================================

@dataclass(frozen=True)
class TokenUsage:
    """Token counters. Summed when stream deltas are merged."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


# =============================================================================
# Functions
# =============================================================================

FunctionExecutor = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class FunctionDeclaration:
    """
    A caller-registered function the model may ask to call.

    The executor never participates in equality or in the request hash.
    input_schema is carried through to the backend and to an optional
    argument validator; the core does not interpret it.
    """
    name: str
    description: str
    input_schema: Optional[Mapping[str, Any]] = None
    executor: Optional[FunctionExecutor] = field(
        default=None, compare=False, repr=False, metadata={"hash": False}
    )


@dataclass
class FunctionExec:
    """Record of one executed function call attached to a result slot."""
    name: str
    args: Any = None
    result: Optional[str] = None


# =============================================================================
# Requests
# =============================================================================

@dataclass(frozen=True)
class ChatTurn:
    role: str
    text: str
    name: Optional[str] = None


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    system_prompt: Optional[str] = None
    model_config: Optional[ModelConfig] = None
    functions: Tuple[FunctionDeclaration, ...] = ()
    function_call: Optional[str] = None
    identity: Optional[Mapping[str, str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "functions", tuple(self.functions or ()))

    def with_stream(self, stream: Optional[bool]) -> "CompletionRequest":
        return dataclasses.replace(self, model_config=_with_stream(self.model_config, stream))


@dataclass(frozen=True)
class ChatRequest:
    chat_prompt: Tuple[ChatTurn, ...]
    system_prompt: Optional[str] = None
    model_config: Optional[ModelConfig] = None
    functions: Tuple[FunctionDeclaration, ...] = ()
    function_call: Optional[str] = None
    identity: Optional[Mapping[str, str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "chat_prompt", tuple(self.chat_prompt or ()))
        object.__setattr__(self, "functions", tuple(self.functions or ()))

    def with_stream(self, stream: Optional[bool]) -> "ChatRequest":
        return dataclasses.replace(self, model_config=_with_stream(self.model_config, stream))


@dataclass(frozen=True)
class EmbedRequest:
    texts: Tuple[str, ...]
    embed_model: Optional[str] = None

    def __post_init__(self) -> None:
        texts = self.texts
        if isinstance(texts, str):
            texts = (texts,)
        object.__setattr__(self, "texts", tuple(texts or ()))


TextRequest = Union[CompletionRequest, ChatRequest]


def _with_stream(config: Optional[ModelConfig], stream: Optional[bool]) -> ModelConfig:
    return dataclasses.replace(config or ModelConfig(), stream=stream)


# =============================================================================
# Results
# =============================================================================

@dataclass
class TextResult:
    """One result slot (one choice) of a text response."""
    text: str = ""
    id: Optional[str] = None
    finish_reason: Optional[str] = None
    functions: List[FunctionExec] = field(default_factory=list)


@dataclass
class TextResponse:
    """
    Unified completion / chat result.

    Also the shape of a streaming delta, where each slot carries only the
    newest text fragment.
    """
    results: List[TextResult] = field(default_factory=list)
    model_usage: Optional[TokenUsage] = None
    embed_model_usage: Optional[TokenUsage] = None
    session_id: Optional[str] = None
    remote_id: Optional[str] = None

    @property
    def text(self) -> str:
        """Text of the first slot, or '' when there are no results."""
        return self.results[0].text if self.results else ""


@dataclass
class EmbedResponse:
    texts: Tuple[str, ...] = ()
    embedding: Tuple[float, ...] = ()
    model_usage: Optional[TokenUsage] = None
    session_id: Optional[str] = None
    remote_id: Optional[str] = None


# =============================================================================
# Transport descriptor / per-call options
# =============================================================================

@dataclass(frozen=True)
class ApiDescriptor:
    """
    Where and how a prepared native request is sent.

    name:
        Logical call name (usually the provider path, e.g. "/chat/completions").
    url:
        Base URL of the backend; filled in by the adapter.
    headers:
        Per-call headers merged with the adapter's static headers.
    stream:
        Whether the transport should return a delta stream.
    """
    name: str
    url: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    stream: Optional[bool] = None


@dataclass(frozen=True)
class PromptConfig:
    """Base prompt configuration handed to request hooks."""
    stop_sequences: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CallOptions:
    """
    Per-call configuration surface.

    cache / cache_max_age_seconds:
        Opt into the response cache for completion / chat calls.
    stream:
        Overrides request.model_config.stream when not None.
    trace_id / session_id:
        Copied onto the trace step (trace_id generated when absent);
        session_id is also stamped onto every result and delta.
    disable_log:
        Skip trace recording for this call.
    debug:
        Log request / response summaries for this call.
    """
    stop_sequences: Tuple[str, ...] = ()
    cache: bool = False
    cache_max_age_seconds: float = 3600
    stream: Optional[bool] = None
    trace_id: Optional[str] = None
    session_id: Optional[str] = None
    disable_log: bool = False
    debug: bool = False

    def prompt_config(self) -> PromptConfig:
        return PromptConfig(stop_sequences=tuple(self.stop_sequences or ()))


NativeRequest = Any
NativeResponse = Any
BuildRequestFn = Callable[[Any, PromptConfig], Tuple[ApiDescriptor, NativeRequest]]
ParseResponseFn = Callable[[NativeResponse], Any]

__all__ = [
    "ModelConfig",
    "ModelInfo",
    "ModelInfoWithProvider",
    "TokenUsage",
    "FunctionDeclaration",
    "FunctionExec",
    "FunctionExecutor",
    "ChatTurn",
    "CompletionRequest",
    "ChatRequest",
    "EmbedRequest",
    "TextRequest",
    "TextResult",
    "TextResponse",
    "EmbedResponse",
    "ApiDescriptor",
    "PromptConfig",
    "CallOptions",
    "NativeRequest",
    "NativeResponse",
    "BuildRequestFn",
    "ParseResponseFn",
]
