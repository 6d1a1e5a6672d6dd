# textgen_sdk/ai/base.py
# SPDX-License-Identifier: Apache-2.0
"""
Adapter SDK: unified text generation (completion / chat / embed)

Purpose
-------
One capability-based interface over heterogeneous text-generation backends,
with the cross-cutting concerns no single backend provides:

- Content-addressed response caching (completion / chat)
- Rate limiting and deadlines around each dispatch
- Streaming delta aggregation into one final result
- One usage trace per call
- Inline function-call execution

Backend implementers subclass BaseAIAdapter and override only
`_do_capabilities()`, returning an AdapterCapabilities that tags which
capabilities exist and the hooks for each:

    build_request(unified_request, prompt_config) -> (ApiDescriptor, native)
    parse_response(native_response)               -> TextResponse | EmbedResponse
    parse_delta(native_delta)                     -> TextResponse   (streaming)

Capability resolution
---------------------
Every call goes through `resolve_route()`:

    1. the requested capability's hooks, if present
    2. otherwise the sibling (completion <-> chat), converting the request
    3. otherwise ConfigurationError naming the missing hook

Embedding has no sibling.

Call pipeline (completion / chat)
---------------------------------
    resolve route -> cache lookup (options.cache) -> build native request
    -> trace request snapshot -> Dispatcher (limiter, deadline, timing)
    -> unary:  parse -> functions -> trace -> cache -> return TextResponse
    -> stream: return ResponseStream; on clean drain:
               merge -> functions -> trace -> cache (exactly once)

Cache hits are returned as stored and skip dispatch, functions and tracing;
a streaming call served from cache gets a one-delta replay stream.

Mode Strategy
-------------
mode: "thin" (default)
    - No limiter, no deadline, traces go nowhere unless a sink is given.
mode: "standalone"
    - TokenBucketLimiter, SimpleDeadline, LoggingTraceSink.
Explicit keyword arguments always override mode defaults. The response cache
is an instance: pass one in to share it between adapters, otherwise each
adapter owns an InMemoryTTLCache.
"""

from __future__ import annotations

import copy
import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from textgen_sdk.ai.cache import Cache, InMemoryTTLCache, hash_request
from textgen_sdk.ai.dispatch import (
    DeadlinePolicy,
    Dispatched,
    Dispatcher,
    RateLimiter,
    SimpleDeadline,
    TokenBucketLimiter,
    Transport,
    merge_headers,
)
from textgen_sdk.ai.errors import ConfigurationError
from textgen_sdk.ai.functions import FunctionInvoker
from textgen_sdk.ai.metrics import MetricsSink, NoopMetrics
from textgen_sdk.ai.stream import ResponseStream
from textgen_sdk.ai.tracing import (
    LoggingTraceSink,
    TextRequestBuilder,
    TextResponseBuilder,
    TraceObserver,
    TraceRecorder,
    TraceSink,
    TraceStepBuilder,
)
from textgen_sdk.ai.types import (
    ApiDescriptor,
    BuildRequestFn,
    CallOptions,
    ChatRequest,
    ChatTurn,
    CompletionRequest,
    EmbedRequest,
    EmbedResponse,
    ModelConfig,
    ModelInfo,
    ModelInfoWithProvider,
    ParseResponseFn,
    TextRequest,
    TextResponse,
)

LOG = logging.getLogger(__name__)


# =============================================================================
# Capability model
# =============================================================================

class Capability(str, enum.Enum):
    COMPLETION = "completion"
    CHAT = "chat"
    EMBED = "embed"


@dataclass(frozen=True)
class CapabilityHooks:
    """
    Conversion hooks for one capability.

    build_request:
        Unified request + PromptConfig -> (ApiDescriptor, native request).
    parse_response:
        Pure conversion of a native response into the unified shape.
    parse_delta:
        Pure conversion of one native stream delta into a partial TextResponse.
        Only needed for streaming calls.
    """
    build_request: BuildRequestFn
    parse_response: Optional[ParseResponseFn] = None
    parse_delta: Optional[Callable[[Any], TextResponse]] = None


@dataclass(frozen=True)
class AdapterCapabilities:
    """Tagged set of capabilities a backend supports; absent entries are None."""
    completion: Optional[CapabilityHooks] = None
    chat: Optional[CapabilityHooks] = None
    embed: Optional[CapabilityHooks] = None

    def hooks_for(self, capability: Capability) -> Optional[CapabilityHooks]:
        return getattr(self, capability.value)

    def supported(self) -> tuple:
        return tuple(c for c in Capability if self.hooks_for(c) is not None)


@dataclass(frozen=True)
class Route:
    requested: Capability
    resolved: Capability
    hooks: CapabilityHooks

    @property
    def is_fallback(self) -> bool:
        return self.requested is not self.resolved


_FALLBACKS = {
    Capability.COMPLETION: Capability.CHAT,
    Capability.CHAT: Capability.COMPLETION,
}


def resolve_route(capabilities: AdapterCapabilities, requested: Capability) -> Route:
    """Direct capability, then the completion/chat sibling, then ConfigurationError."""
    hooks = capabilities.hooks_for(requested)
    if hooks is not None:
        return Route(requested=requested, resolved=requested, hooks=hooks)

    sibling = _FALLBACKS.get(requested)
    if sibling is not None:
        hooks = capabilities.hooks_for(sibling)
        if hooks is not None:
            return Route(requested=requested, resolved=sibling, hooks=hooks)
        raise ConfigurationError(
            f"{requested.value}.build_request not implemented "
            f"(and no {sibling.value}.build_request fallback)",
            details={"capability": requested.value, "fallback": sibling.value},
        )
    raise ConfigurationError(
        f"{requested.value}.build_request not implemented",
        details={"capability": requested.value},
    )


# =============================================================================
# Request shape conversion (completion <-> chat)
# =============================================================================

def to_chat_request(req: CompletionRequest) -> ChatRequest:
    """Equivalent single-turn chat request: the prompt becomes one user turn."""
    return ChatRequest(
        chat_prompt=(ChatTurn(role="user", text=req.prompt),),
        system_prompt=req.system_prompt,
        model_config=req.model_config,
        functions=req.functions,
        function_call=req.function_call,
        identity=req.identity,
    )


def to_completion_request(req: ChatRequest) -> CompletionRequest:
    """Flatten chat turns into one prompt, one `role: text` line per turn."""
    prompt = "\n".join(f"{turn.role}: {turn.text}" for turn in req.chat_prompt)
    return CompletionRequest(
        prompt=prompt,
        system_prompt=req.system_prompt,
        model_config=req.model_config,
        functions=req.functions,
        function_call=req.function_call,
        identity=req.identity,
    )


def _convert_for(route: Route, req: Any) -> Any:
    if not route.is_fallback:
        return req
    if route.resolved is Capability.CHAT:
        return to_chat_request(req)
    return to_completion_request(req)


# =============================================================================
# Base adapter
# =============================================================================

class BaseAIAdapter:
    """
    Orchestrates completion / chat / embed calls for one backend.

    This class:
        - Resolves capabilities explicitly (direct, fallback, or fail fast).
        - Looks up and writes the response cache (opt-in per call).
        - Builds native requests and merges static headers over call headers.
        - Dispatches through limiter + deadline with timing capture.
        - Merges streamed deltas and runs post-processing exactly once.
        - Runs declared functions found in generated text.
        - Records one trace step per call.
        - Emits metrics (no prompt text).

    Backend implementers override `_do_capabilities()` (and `close()` when
    they hold resources).
    """

    _component = "ai"

    def __init__(
        self,
        *,
        name: str,
        api_url: str,
        transport: Transport,
        model: str,
        embed_model: Optional[str] = None,
        headers: Optional[dict] = None,
        model_info: Sequence[ModelInfo] = (),
        model_config: Optional[ModelConfig] = None,
        mode: str = "thin",
        # optional pluggable policies/infra
        cache: Optional[Cache] = None,
        limiter: Optional[RateLimiter] = None,
        deadline_policy: Optional[DeadlinePolicy] = None,
        trace_sink: Optional[TraceSink] = None,
        metrics: Optional[MetricsSink] = None,
        function_invoker: Optional[FunctionInvoker] = None,
        observer: Optional[TraceObserver] = None,
        debug: bool = False,
        disable_log: bool = False,
    ) -> None:
        """
        Initialize the adapter with common infra.

        Args:
            name:
                Provider name, reported on traces.
            api_url:
                Base URL filled into every ApiDescriptor.
            transport:
                Wire-level dispatch capability.
            model / embed_model:
                Default model names; model must be non-empty.
            headers:
                Static headers; they win over per-call headers.
            model_info:
                Known models with pricing; unknown names fall back to a
                zero-cost ModelInfo.
            model_config:
                Default sampling configuration reported on traces.
            mode:
                "thin" or "standalone" (see module docs).
            cache / limiter / deadline_policy / trace_sink / metrics:
                Override mode defaults.
            function_invoker:
                Custom invoker (e.g. with a JsonSchemaArgsValidator).
            observer:
                Synchronous callback receiving every TraceStep.
            debug:
                Log request / response summaries for every call.
            disable_log:
                Skip trace recording for every call.
        """
        if not model:
            raise ConfigurationError("no model defined")

        self._ai_name = name
        self._api_url = api_url
        self._transport = transport
        self._headers = dict(headers or {})
        self._model = model
        self._embed_model = embed_model
        self._model_config = model_config or ModelConfig()

        self._model_info = next(
            (m for m in model_info if m.name == model),
            ModelInfo(name=model),
        )
        self._embed_model_info = next(
            (m for m in model_info if embed_model and m.name == embed_model),
            None,
        )

        m = (mode or "thin").strip().lower()
        if m not in {"thin", "standalone"}:
            m = "thin"
        self._mode = m

        if self._mode == "standalone":
            if metrics is None:
                LOG.warning(
                    "Using standalone mode without metrics - "
                    "consider providing a metrics sink for production use"
                )
            limiter = limiter or TokenBucketLimiter()
            deadline_policy = deadline_policy or SimpleDeadline()
            trace_sink = trace_sink or LoggingTraceSink()

        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._cache: Cache = cache if cache is not None else InMemoryTTLCache()
        self._limiter = limiter
        self._deadline_policy = deadline_policy
        self._dispatcher = Dispatcher(
            limiter=limiter,
            deadline_policy=deadline_policy,
            metrics=self._metrics,
        )
        self._recorder = TraceRecorder(trace_sink)
        self._invoker = function_invoker or FunctionInvoker()
        self._observer = observer
        self._debug = bool(debug)
        self._disable_log = bool(disable_log)

    # --- async context management (resource cleanup hint) --------------------

    async def __aenter__(self) -> "BaseAIAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """
        Clean up resources (e.g., HTTP sessions, connection pools).

        Override in concrete adapters as needed. Default is a no-op.
        """
        return None

    # --- identity / configuration --------------------------------------------

    def name(self) -> str:
        return self._ai_name

    def get_model_info(self) -> ModelInfoWithProvider:
        return self._model_info.with_provider(self._ai_name)

    def get_embed_model_info(self) -> Optional[ModelInfoWithProvider]:
        if self._embed_model_info is None:
            return None
        return self._embed_model_info.with_provider(self._ai_name)

    def get_model_config(self) -> ModelConfig:
        return self._model_config

    def set_options(
        self,
        *,
        debug: Optional[bool] = None,
        disable_log: Optional[bool] = None,
        observer: Optional[TraceObserver] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Update adapter-wide options; None leaves a setting unchanged."""
        if debug is not None:
            self._debug = bool(debug)
        if disable_log is not None:
            self._disable_log = bool(disable_log)
        if observer is not None:
            self._observer = observer
        if limiter is not None:
            self._limiter = limiter
            self._dispatcher = Dispatcher(
                limiter=limiter,
                deadline_policy=self._deadline_policy,
                metrics=self._metrics,
            )

    def capabilities(self) -> AdapterCapabilities:
        return self._do_capabilities()

    # --- backend hook (override) ---------------------------------------------

    def _do_capabilities(self) -> AdapterCapabilities:
        """Return the hooks this backend supports. Default: none."""
        return AdapterCapabilities()

    # --- internal helpers -----------------------------------------------------

    def _count(self, name: str, value: int = 1) -> None:
        """Metrics-only; failures are swallowed."""
        try:
            self._metrics.counter(component=self._component, name=name, value=value)
        except Exception:
            LOG.debug("metrics counter failed", exc_info=True)

    def _build(
        self,
        build_request: BuildRequestFn,
        req: Any,
        options: CallOptions,
        stream: Optional[bool],
    ) -> tuple:
        descriptor, native = build_request(req, options.prompt_config())
        descriptor = dataclasses.replace(
            descriptor,
            url=descriptor.url or self._api_url,
            headers=merge_headers(descriptor.headers, self._headers),
            stream=stream,
        )
        return descriptor, native

    async def _dispatch(
        self,
        descriptor: ApiDescriptor,
        native: Any,
        *,
        op: str,
    ) -> Dispatched:
        async def _call() -> Any:
            return await self._transport.dispatch(descriptor, native)

        return await self._dispatcher.execute(_call, op=op)

    def _trace_request(self, route: Route, req: TextRequest) -> TextRequestBuilder:
        builder = TextRequestBuilder()
        if route.resolved is Capability.CHAT:
            return builder.set_chat_step(req, self.get_model_config(), self.get_model_info())
        return builder.set_completion_step(req, self.get_model_config(), self.get_model_info())

    def _logging_enabled(self, options: CallOptions) -> bool:
        return not (options.disable_log or self._disable_log)

    async def _finish(
        self,
        *,
        req: TextRequest,
        res: TextResponse,
        options: CallOptions,
        request_trace: TextRequestBuilder,
        elapsed_ms: float,
        cache_key: Optional[str],
    ) -> TextResponse:
        """Post-processing shared by unary and streamed calls; runs once per call."""
        report = await self._invoker.invoke(req.functions, res)

        if options.debug or self._debug:
            _log_response(res)

        if self._logging_enabled(options):
            response_trace = (
                TextResponseBuilder()
                .set_results(res.results)
                .set_model_usage(res.model_usage)
                .set_model_response_time(elapsed_ms)
                .set_functions(report.calls)
                .set_parsing_error(report.parsing_error)
            )
            step = (
                TraceStepBuilder()
                .set_trace_id(options.trace_id)
                .set_session_id(options.session_id)
                .set_request(request_trace)
                .set_response(response_trace)
                .build()
            )
            await self._recorder.record(step, self._observer)

        if cache_key is not None:
            await self._cache.set(cache_key, copy.deepcopy(res), options.cache_max_age_seconds)

        self._count("requests_total")
        if res.model_usage is not None:
            self._count("tokens_processed", res.model_usage.total_tokens)
        return res

    async def _generate(
        self,
        requested: Capability,
        req: TextRequest,
        options: Optional[CallOptions],
    ) -> Union[TextResponse, ResponseStream]:
        options = options or CallOptions()
        route = resolve_route(self._do_capabilities(), requested)

        stream = options.stream
        if stream is None and req.model_config is not None:
            stream = req.model_config.stream
        stream = bool(stream)

        cache_key: Optional[str] = None
        if options.cache:
            cache_key = hash_request(req, options.prompt_config())
            cached = await self._cache.get(cache_key)
            if cached is not None:
                self._count("cache_hits")
                if stream:
                    return ResponseStream.replay(copy.deepcopy(cached), session_id=options.session_id)
                return copy.deepcopy(cached)

        hooks = route.hooks
        if stream and hooks.parse_delta is None:
            raise ConfigurationError(f"{route.resolved.value}.parse_delta not implemented")
        if not stream and hooks.parse_response is None:
            raise ConfigurationError(f"{route.resolved.value}.parse_response not implemented")

        call_req = _convert_for(route, req)
        if call_req.model_config is None:
            call_req = dataclasses.replace(call_req, model_config=self.get_model_config())
        call_req = call_req.with_stream(stream)
        descriptor, native = self._build(hooks.build_request, call_req, options, stream)
        request_trace = self._trace_request(route, call_req)

        if options.debug or self._debug:
            _log_request(call_req)

        dispatched = await self._dispatch(descriptor, native, op=route.resolved.value)

        if stream:
            async def _on_complete(merged: TextResponse) -> TextResponse:
                merged.session_id = options.session_id
                return await self._finish(
                    req=call_req,
                    res=merged,
                    options=options,
                    request_trace=request_trace,
                    elapsed_ms=dispatched.elapsed_ms(),
                    cache_key=cache_key,
                )

            return ResponseStream(
                dispatched.value,
                hooks.parse_delta,
                on_complete=_on_complete,
                session_id=options.session_id,
            )

        res = hooks.parse_response(dispatched.value)
        res.session_id = options.session_id
        return await self._finish(
            req=call_req,
            res=res,
            options=options,
            request_trace=request_trace,
            elapsed_ms=dispatched.elapsed_ms(),
            cache_key=cache_key,
        )

    # --- public API -----------------------------------------------------------

    async def completion(
        self,
        req: CompletionRequest,
        options: Optional[CallOptions] = None,
    ) -> Union[TextResponse, ResponseStream]:
        """
        Text completion.

        Falls back to the chat hooks (single user turn) when the backend has
        no completion hooks. Returns a ResponseStream when streaming is on;
        a cache hit replays the stored result as a single delta.
        """
        return await self._generate(Capability.COMPLETION, req, options)

    async def chat(
        self,
        req: ChatRequest,
        options: Optional[CallOptions] = None,
    ) -> Union[TextResponse, ResponseStream]:
        """
        Chat completion.

        Falls back to the completion hooks (turns flattened to one prompt)
        when the backend has no chat hooks.
        """
        return await self._generate(Capability.CHAT, req, options)

    async def embed(
        self,
        req: EmbedRequest,
        options: Optional[CallOptions] = None,
    ) -> EmbedResponse:
        """Embeddings. Never cached or streamed; traced like the others."""
        options = options or CallOptions()
        route = resolve_route(self._do_capabilities(), Capability.EMBED)
        if route.hooks.parse_response is None:
            raise ConfigurationError("embed.parse_response not implemented")

        if req.embed_model is None and self._embed_model:
            req = dataclasses.replace(req, embed_model=self._embed_model)

        descriptor, native = self._build(route.hooks.build_request, req, options, None)
        request_trace = TextRequestBuilder().set_embed_step(req, self.get_embed_model_info())

        dispatched = await self._dispatch(descriptor, native, op=Capability.EMBED.value)
        elapsed_ms = dispatched.elapsed_ms()

        res: EmbedResponse = route.hooks.parse_response(dispatched.value)
        if not res.texts:
            res.texts = tuple(req.texts)
        res.session_id = options.session_id

        if self._logging_enabled(options):
            response_trace = (
                TextResponseBuilder()
                .set_embed_model_usage(res.model_usage)
                .set_embed_model_response_time(elapsed_ms)
            )
            step = (
                TraceStepBuilder()
                .set_trace_id(options.trace_id)
                .set_session_id(options.session_id)
                .set_request(request_trace)
                .set_response(response_trace)
                .build()
            )
            await self._recorder.record(step, self._observer)

        self._count("requests_total")
        return res


# =============================================================================
# Debug logging
# =============================================================================

def _log_request(req: TextRequest) -> None:
    if isinstance(req, ChatRequest):
        body = "\n".join(f"> {t.role}: {t.text}" for t in req.chat_prompt)
    else:
        body = f"system: {req.system_prompt}\nprompt: {req.prompt}"
    LOG.info("Request:\n%s", body)
    if req.functions:
        LOG.info("functions: %s", ", ".join(f.name for f in req.functions))


def _log_response(res: TextResponse) -> None:
    prefix = "> " if len(res.results) > 1 else ""
    LOG.info("Response:\n%s", "\n".join(f"{prefix}{r.text}" for r in res.results))


__all__ = [
    "Capability",
    "CapabilityHooks",
    "AdapterCapabilities",
    "Route",
    "resolve_route",
    "to_chat_request",
    "to_completion_request",
    "BaseAIAdapter",
]
