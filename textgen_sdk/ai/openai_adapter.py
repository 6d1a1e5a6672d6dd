# textgen_sdk/ai/openai_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
OpenAI backend for the unified adapter.

Two pieces:

- OpenAIAdapter: completion / chat / embed hooks that map unified requests to
  OpenAI request bodies (plain dicts) and OpenAI response / chunk dicts back to
  the unified shapes. The hooks are pure and transport-agnostic, so they work
  with any transport that returns OpenAI-shaped JSON.
- OpenAITransport: a Transport backed by the official `openai` async client
  (`AsyncOpenAI`). Client errors are normalized into the APIError taxonomy
  with status / body / headers preserved.

Usage
-----
    from openai import AsyncOpenAI
    from textgen_sdk.ai.openai_adapter import OpenAIAdapter, OpenAITransport

    adapter = OpenAIAdapter(
        transport=OpenAITransport(client=AsyncOpenAI(api_key="sk-...")),
        model="gpt-4o-mini",
    )
    res = await adapter.chat(ChatRequest(chat_prompt=[ChatTurn("user", "Hello!")]))
    print(res.text)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

import openai  # type: ignore

from textgen_sdk.ai.base import AdapterCapabilities, BaseAIAdapter, CapabilityHooks
from textgen_sdk.ai.errors import (
    APIError,
    AuthError,
    BadRequest,
    DeadlineExceeded,
    NotSupported,
    ResourceExhausted,
    TransientNetwork,
    Unavailable,
)
from textgen_sdk.ai.types import (
    ApiDescriptor,
    ChatRequest,
    CompletionRequest,
    EmbedRequest,
    EmbedResponse,
    ModelConfig,
    ModelInfo,
    PromptConfig,
    TextResponse,
    TextResult,
    TokenUsage,
)

logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1"

OPENAI_MODEL_INFO: Tuple[ModelInfo, ...] = (
    ModelInfo(
        name="gpt-4o",
        prompt_token_cost_per_1k=0.0025,
        completion_token_cost_per_1k=0.01,
        max_tokens=128_000,
    ),
    ModelInfo(
        name="gpt-4o-mini",
        prompt_token_cost_per_1k=0.00015,
        completion_token_cost_per_1k=0.0006,
        max_tokens=128_000,
    ),
    ModelInfo(
        name="gpt-3.5-turbo-instruct",
        prompt_token_cost_per_1k=0.0015,
        completion_token_cost_per_1k=0.002,
        max_tokens=4_096,
    ),
    ModelInfo(
        name="text-embedding-3-small",
        prompt_token_cost_per_1k=0.00002,
        completion_token_cost_per_1k=0.0,
        max_tokens=8_191,
    ),
)

CHAT_PATH = "/chat/completions"
COMPLETION_PATH = "/completions"
EMBED_PATH = "/embeddings"


# =============================================================================
# Shape helpers
# =============================================================================

def _sampling_params(config: Optional[ModelConfig], prompt: PromptConfig) -> Dict[str, Any]:
    """Non-None sampling fields in OpenAI naming."""
    config = config or ModelConfig()
    body: Dict[str, Any] = {
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "top_p": config.top_p,
        "n": config.n,
        "presence_penalty": config.presence_penalty,
        "frequency_penalty": config.frequency_penalty,
        "logit_bias": dict(config.logit_bias) if config.logit_bias else None,
        "stop": list(prompt.stop_sequences) or None,
        "stream": bool(config.stream) or None,
    }
    return {k: v for k, v in body.items() if v is not None}


def _usage(raw: Optional[Mapping[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    return TokenUsage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=int(raw.get("total_tokens") or 0),
    )


def _functions_param(req: Any) -> Optional[List[Dict[str, Any]]]:
    if not req.functions:
        return None
    return [
        {
            "name": f.name,
            "description": f.description,
            "parameters": dict(f.input_schema or {"type": "object", "properties": {}}),
        }
        for f in req.functions
    ]


# =============================================================================
# Adapter
# =============================================================================

class OpenAIAdapter(BaseAIAdapter):
    """
    Unified adapter over the OpenAI REST API shapes.

    Parameters
    ----------
    transport:
        Usually an OpenAITransport; anything returning OpenAI-shaped dicts works.
    model / embed_model:
        Defaults used when a request does not name one.
    api_url:
        Base URL (for proxies and gateways).
    organization:
        Sent as the static OpenAI-Organization header when given.
    **kwargs:
        Passed through to BaseAIAdapter (cache, limiter, mode, ...).
    """

    def __init__(
        self,
        *,
        transport,
        model: str = "gpt-4o-mini",
        embed_model: Optional[str] = "text-embedding-3-small",
        api_url: str = OPENAI_API_URL,
        organization: Optional[str] = None,
        model_config: Optional[ModelConfig] = None,
        **kwargs: Any,
    ) -> None:
        headers = dict(kwargs.pop("headers", None) or {})
        if organization:
            headers["OpenAI-Organization"] = organization
        super().__init__(
            name="openai",
            api_url=api_url,
            transport=transport,
            model=model,
            embed_model=embed_model,
            headers=headers,
            model_info=kwargs.pop("model_info", OPENAI_MODEL_INFO),
            model_config=model_config or ModelConfig(max_tokens=500, temperature=0.0),
            **kwargs,
        )

    async def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close is not None:
            await close()

    def _do_capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            completion=CapabilityHooks(
                build_request=self.generate_completion_request,
                parse_response=self.parse_completion_response,
                parse_delta=self.parse_completion_delta,
            ),
            chat=CapabilityHooks(
                build_request=self.generate_chat_request,
                parse_response=self.parse_chat_response,
                parse_delta=self.parse_chat_delta,
            ),
            embed=CapabilityHooks(
                build_request=self.generate_embed_request,
                parse_response=self.parse_embed_response,
            ),
        )

    # --- request hooks --------------------------------------------------------

    def generate_completion_request(
        self, req: CompletionRequest, config: PromptConfig
    ) -> Tuple[ApiDescriptor, Dict[str, Any]]:
        prompt = f"{req.system_prompt}\n{req.prompt}" if req.system_prompt else req.prompt
        body: Dict[str, Any] = {"model": self._model, "prompt": prompt}
        body.update(_sampling_params(req.model_config or self.get_model_config(), config))
        if req.model_config and req.model_config.suffix:
            body["suffix"] = req.model_config.suffix
        return ApiDescriptor(name=COMPLETION_PATH), body

    def generate_chat_request(
        self, req: ChatRequest, config: PromptConfig
    ) -> Tuple[ApiDescriptor, Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if req.system_prompt:
            messages.append({"role": "system", "content": req.system_prompt})
        for turn in req.chat_prompt:
            msg: Dict[str, Any] = {"role": turn.role, "content": turn.text}
            if turn.name:
                msg["name"] = turn.name
            messages.append(msg)

        body: Dict[str, Any] = {"model": self._model, "messages": messages}
        body.update(_sampling_params(req.model_config or self.get_model_config(), config))
        functions = _functions_param(req)
        if functions:
            body["functions"] = functions
            if req.function_call:
                body["function_call"] = (
                    req.function_call
                    if req.function_call in ("auto", "none")
                    else {"name": req.function_call}
                )
        return ApiDescriptor(name=CHAT_PATH), body

    def generate_embed_request(
        self, req: EmbedRequest, config: PromptConfig
    ) -> Tuple[ApiDescriptor, Dict[str, Any]]:
        model = req.embed_model or self._embed_model
        if not model:
            raise BadRequest("no embedding model configured")
        return ApiDescriptor(name=EMBED_PATH), {"model": model, "input": list(req.texts)}

    # --- response hooks (pure) -----------------------------------------------

    @staticmethod
    def parse_completion_response(resp: Mapping[str, Any]) -> TextResponse:
        return TextResponse(
            remote_id=resp.get("id"),
            results=[
                TextResult(
                    text=c.get("text") or "",
                    id=str(c.get("index", i)),
                    finish_reason=c.get("finish_reason"),
                )
                for i, c in enumerate(resp.get("choices") or [])
            ],
            model_usage=_usage(resp.get("usage")),
        )

    @staticmethod
    def parse_completion_delta(resp: Mapping[str, Any]) -> TextResponse:
        return OpenAIAdapter.parse_completion_response(resp)

    @staticmethod
    def parse_chat_response(resp: Mapping[str, Any]) -> TextResponse:
        results = []
        for i, c in enumerate(resp.get("choices") or []):
            message = c.get("message") or {}
            text = message.get("content") or ""
            call = message.get("function_call")
            if call and call.get("name"):
                # Surface native function calls through the inline marker grammar.
                text += f"\nFunction Call: {call['name']}({call.get('arguments') or ''})"
            results.append(
                TextResult(text=text, id=str(c.get("index", i)), finish_reason=c.get("finish_reason"))
            )
        return TextResponse(
            remote_id=resp.get("id"),
            results=results,
            model_usage=_usage(resp.get("usage")),
        )

    @staticmethod
    def parse_chat_delta(resp: Mapping[str, Any]) -> TextResponse:
        """
        One chat.completion.chunk -> one partial response.

        Result slots are placed by choice index so the merger folds each
        choice into its own slot.
        """
        choices = resp.get("choices") or []
        width = max((int(c.get("index", i)) for i, c in enumerate(choices)), default=-1) + 1
        results = [TextResult() for _ in range(width)]
        for i, c in enumerate(choices):
            idx = int(c.get("index", i))
            delta = c.get("delta") or {}
            text = delta.get("content") or ""
            # Function calls stream as name, then argument fragments; rendered
            # in the same marker form as unary responses once merged.
            call = delta.get("function_call") or {}
            if call.get("name"):
                text += f"\nFunction Call: {call['name']}("
            text += call.get("arguments") or ""
            if c.get("finish_reason") == "function_call":
                text += ")"
            results[idx] = TextResult(
                text=text,
                id=str(idx),
                finish_reason=c.get("finish_reason"),
            )
        return TextResponse(
            remote_id=resp.get("id"),
            results=results,
            model_usage=_usage(resp.get("usage")),
        )

    @staticmethod
    def parse_embed_response(resp: Mapping[str, Any]) -> EmbedResponse:
        data = resp.get("data") or []
        embedding = tuple(float(x) for x in (data[0].get("embedding") if data else []) or [])
        return EmbedResponse(
            remote_id=resp.get("id"),
            embedding=embedding,
            model_usage=_usage(resp.get("usage")),
        )


# =============================================================================
# Transport over the official client
# =============================================================================

# Error types (v1+ client), pulled via getattr so older clients still import.
APIStatusError = getattr(openai, "APIStatusError", None)
APIConnectionError = getattr(openai, "APIConnectionError", None)
APITimeoutError = getattr(openai, "APITimeoutError", None)
OpenAIError = getattr(openai, "OpenAIError", Exception)


def _extract_retry_after_ms(headers: Mapping[str, str]) -> Optional[int]:
    """Best-effort Retry-After (seconds) -> milliseconds."""
    val = headers.get("retry-after") or headers.get("Retry-After")
    if val is None:
        return None
    try:
        return max(0, int(str(val).strip())) * 1000
    except ValueError:
        return None


def translate_openai_error(err: Exception, request: Any = None) -> APIError:
    """
    Map OpenAI client errors -> APIError subclasses.

    Status, body and headers are carried over as surfaced by the client.
    """
    # Timeout is a subclass of connection error in the v1 client; check it first.
    if APITimeoutError is not None and isinstance(err, APITimeoutError):
        return DeadlineExceeded(str(err) or "OpenAI API request timed out", request=request)
    if APIConnectionError is not None and isinstance(err, APIConnectionError):
        return TransientNetwork(str(err) or "OpenAI API connection error", request=request)

    if APIStatusError is not None and isinstance(err, APIStatusError):
        status = int(getattr(err, "status_code", 0) or 0)
        response = getattr(err, "response", None)
        headers = dict(getattr(response, "headers", None) or {})
        fields = dict(
            status=status,
            body=getattr(err, "body", None),
            headers=headers,
            request=request,
        )
        message = str(err) or f"OpenAI error (status={status})"
        if status == 400:
            return BadRequest(message, **fields)
        if status in (401, 403):
            return AuthError(message, **fields)
        if status == 404:
            return NotSupported(message, **fields)
        if status == 429:
            return ResourceExhausted(message, retry_after_ms=_extract_retry_after_ms(headers), **fields)
        if 500 <= status <= 599:
            return Unavailable(message, retry_after_ms=_extract_retry_after_ms(headers), **fields)
        return APIError(message, **fields)

    if isinstance(err, OpenAIError):
        return Unavailable(str(err) or "OpenAI API error", request=request)
    return Unavailable(str(err) or "internal OpenAI transport error", request=request)


def _dump(obj: Any) -> Any:
    dump = getattr(obj, "model_dump", None)
    return dump() if callable(dump) else obj


class OpenAITransport:
    """
    Transport that sends prepared OpenAI request bodies through `AsyncOpenAI`.

    The descriptor name selects the endpoint; descriptor headers are passed as
    extra headers. Responses are returned as plain dicts, streams as an async
    iterator of chunk dicts.
    """

    def __init__(
        self,
        *,
        client: Optional["openai.AsyncOpenAI"] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        if client is None:
            client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._client = client

    def _endpoint(self, name: str):
        if name == CHAT_PATH:
            return self._client.chat.completions.create
        if name == COMPLETION_PATH:
            return self._client.completions.create
        if name == EMBED_PATH:
            return self._client.embeddings.create
        raise NotSupported(f"unknown OpenAI endpoint {name!r}")

    async def dispatch(self, descriptor: ApiDescriptor, native_request: Mapping[str, Any]) -> Any:
        create = self._endpoint(descriptor.name)
        body = dict(native_request)
        if descriptor.stream:
            body["stream"] = True
        try:
            resp = await create(**body, extra_headers=dict(descriptor.headers or {}))
        except Exception as exc:  # noqa: BLE001
            raise translate_openai_error(exc, request=native_request) from exc

        if descriptor.stream:
            return self._iter_chunks(resp, native_request)
        return _dump(resp)

    async def _iter_chunks(self, stream: Any, native_request: Any) -> AsyncIterator[Any]:
        try:
            async for chunk in stream:
                yield _dump(chunk)
        except Exception as exc:  # noqa: BLE001
            raise translate_openai_error(exc, request=native_request) from exc
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                result = close()
                if asyncio.iscoroutine(result):
                    await result

    async def close(self) -> None:
        """Close the underlying client if supported."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception:  # noqa: BLE001
            logger.debug("OpenAITransport close() failed", exc_info=True)


__all__ = [
    "OPENAI_API_URL",
    "OPENAI_MODEL_INFO",
    "OpenAIAdapter",
    "OpenAITransport",
    "translate_openai_error",
]
