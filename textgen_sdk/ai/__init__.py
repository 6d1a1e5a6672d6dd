# textgen_sdk/ai/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Unified text generation - Public API

This module provides the public interface for the adapter layer.
All public types and policies are re-exported here for clean imports.
"""

from textgen_sdk.ai.base import (
    # Capability model
    Capability,
    CapabilityHooks,
    AdapterCapabilities,
    Route,
    resolve_route,
    to_chat_request,
    to_completion_request,

    # Orchestrating base
    BaseAIAdapter,
)
from textgen_sdk.ai.cache import (
    hash_request,
    Cache,
    CacheEntry,
    NoopCache,
    InMemoryTTLCache,
)
from textgen_sdk.ai.dispatch import (
    Transport,
    merge_headers,
    RateLimiter,
    NoopLimiter,
    TokenBucketLimiter,
    ConcurrencyLimiter,
    DeadlinePolicy,
    NoopDeadline,
    SimpleDeadline,
    Dispatched,
    Dispatcher,
)
from textgen_sdk.ai.errors import (
    AIAdapterError,
    ConfigurationError,
    TraceError,
    APIError,
    BadRequest,
    AuthError,
    NotSupported,
    ResourceExhausted,
    TransientNetwork,
    Unavailable,
    DeadlineExceeded,
    ParsingError,
)
from textgen_sdk.ai.functions import (
    find_function_calls,
    ArgsValidator,
    JsonSchemaArgsValidator,
    InvocationReport,
    FunctionInvoker,
)
from textgen_sdk.ai.metrics import MetricsSink, NoopMetrics, InMemoryMetrics
from textgen_sdk.ai.stream import (
    StreamAborted,
    StreamState,
    merge_text_responses,
    ResponseStream,
)
from textgen_sdk.ai.tracing import (
    FuncTrace,
    TraceRequest,
    TraceResponse,
    TraceStep,
    TraceStepBuilder,
    TraceSink,
    NoopTraceSink,
    LoggingTraceSink,
    InMemoryTraceSink,
    TraceRecorder,
)
from textgen_sdk.ai.types import (
    ModelConfig,
    ModelInfo,
    ModelInfoWithProvider,
    TokenUsage,
    FunctionDeclaration,
    FunctionExec,
    ChatTurn,
    CompletionRequest,
    ChatRequest,
    EmbedRequest,
    TextResult,
    TextResponse,
    EmbedResponse,
    ApiDescriptor,
    PromptConfig,
    CallOptions,
)

__all__ = [
    # Capability model
    "Capability",
    "CapabilityHooks",
    "AdapterCapabilities",
    "Route",
    "resolve_route",
    "to_chat_request",
    "to_completion_request",
    "BaseAIAdapter",

    # Cache
    "hash_request",
    "Cache",
    "CacheEntry",
    "NoopCache",
    "InMemoryTTLCache",

    # Dispatch
    "Transport",
    "merge_headers",
    "RateLimiter",
    "NoopLimiter",
    "TokenBucketLimiter",
    "ConcurrencyLimiter",
    "DeadlinePolicy",
    "NoopDeadline",
    "SimpleDeadline",
    "Dispatched",
    "Dispatcher",

    # Error types
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

    # Functions
    "find_function_calls",
    "ArgsValidator",
    "JsonSchemaArgsValidator",
    "InvocationReport",
    "FunctionInvoker",

    # Metrics
    "MetricsSink",
    "NoopMetrics",
    "InMemoryMetrics",

    # Streaming
    "StreamAborted",
    "StreamState",
    "merge_text_responses",
    "ResponseStream",

    # Tracing
    "FuncTrace",
    "TraceRequest",
    "TraceResponse",
    "TraceStep",
    "TraceStepBuilder",
    "TraceSink",
    "NoopTraceSink",
    "LoggingTraceSink",
    "InMemoryTraceSink",
    "TraceRecorder",

    # Data model
    "ModelConfig",
    "ModelInfo",
    "ModelInfoWithProvider",
    "TokenUsage",
    "FunctionDeclaration",
    "FunctionExec",
    "ChatTurn",
    "CompletionRequest",
    "ChatRequest",
    "EmbedRequest",
    "TextResult",
    "TextResponse",
    "EmbedResponse",
    "ApiDescriptor",
    "PromptConfig",
    "CallOptions",
]
