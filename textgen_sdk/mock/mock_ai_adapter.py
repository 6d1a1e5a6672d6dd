# textgen_sdk/mock/mock_ai_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
Mock backend used in tests and demo scripts.

MockTransport answers in-process with a small native wire format of its own,
so the adapter hooks exercise real conversion work:

    request   {"model", "prompt" | "messages", "stop", "max_tokens", "stream"}
    response  {"id", "outputs": [{"text", "finish"}], "usage": {"in", "out"}}
    delta     {"id", "index", "delta", "finish", "usage"?}
    embed     {"id", "vectors": [[...]], "usage": {"in"}}

Replies are deterministic: a scripted reply for the last user text when one
is registered, otherwise an echo. Streams emit one delta per word (trailing
whitespace kept), with finish reason and usage on the last delta.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import re
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from textgen_sdk.ai.base import AdapterCapabilities, BaseAIAdapter, CapabilityHooks
from textgen_sdk.ai.errors import APIError, Unavailable
from textgen_sdk.ai.types import (
    ApiDescriptor,
    ChatRequest,
    CompletionRequest,
    EmbedRequest,
    EmbedResponse,
    PromptConfig,
    TextResponse,
    TextResult,
    TokenUsage,
)


# -----------------------------
# Small helpers
# -----------------------------

def _tokenize(s: str) -> List[str]:
    # ultra-silly tokenizer = whitespace split
    return s.split()


def _word_chunks(s: str) -> List[str]:
    """Split into words keeping trailing whitespace so chunks re-join exactly."""
    return re.findall(r"\s*\S+\s*", s) or [s]


def _vector_for(text: str, dims: int) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [round(b / 255.0, 6) for b in itertools.islice(itertools.cycle(digest), dims)]


def _apply_stop(text: str, stop: Iterable[str]) -> Tuple[str, bool]:
    cut_at = None
    for s in stop or ():
        if not s:
            continue
        i = text.find(s)
        if i != -1:
            cut_at = i if cut_at is None else min(cut_at, i)
    if cut_at is None:
        return text, False
    return text[:cut_at], True


# -----------------------------
# Transport
# -----------------------------

class MockTransport:
    """
    In-process Transport with call accounting and failure injection.

    Attributes:
        calls:
            (descriptor, native_request) for every dispatch, in order.
        replies:
            Scripted replies keyed by the last user text.
        fail_with:
            Raised by the next dispatch (then cleared) when set.
        abort_after:
            For streams: raise Unavailable after this many deltas.
        latency_s:
            Simulated network delay per dispatch.
    """

    def __init__(
        self,
        *,
        replies: Optional[Mapping[str, str]] = None,
        reply_fn: Optional[Callable[[str], str]] = None,
        latency_s: float = 0.0,
        embed_dims: int = 8,
    ) -> None:
        self.replies: Dict[str, str] = dict(replies or {})
        self._reply_fn = reply_fn or (lambda text: f"echo: {text}")
        self.latency_s = latency_s
        self.embed_dims = embed_dims
        self.calls: List[Tuple[ApiDescriptor, Any]] = []
        self.fail_with: Optional[BaseException] = None
        self.abort_after: Optional[int] = None
        self._ids = itertools.count(1)

    @property
    def dispatch_count(self) -> int:
        return len(self.calls)

    def reply_for(self, text: str) -> str:
        if text in self.replies:
            return self.replies[text]
        return self._reply_fn(text)

    async def dispatch(self, descriptor: ApiDescriptor, native_request: Mapping[str, Any]) -> Any:
        self.calls.append((descriptor, native_request))
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        if self.fail_with is not None:
            err, self.fail_with = self.fail_with, None
            raise err

        remote_id = f"mock-{next(self._ids)}"
        if descriptor.name == "embed":
            texts = list(native_request.get("input") or [])
            return {
                "id": remote_id,
                "vectors": [_vector_for(t, self.embed_dims) for t in texts],
                "usage": {"in": sum(len(_tokenize(t)) for t in texts)},
            }
        if descriptor.name not in ("complete", "chat"):
            raise APIError(f"unknown mock endpoint {descriptor.name!r}", status=404)

        if descriptor.name == "chat":
            messages = native_request.get("messages") or []
            users = [m for m in messages if m.get("role") == "user"]
            source = str((users or messages or [{}])[-1].get("content", ""))
            prompt_text = "\n".join(str(m.get("content", "")) for m in messages)
        else:
            source = str(native_request.get("prompt", ""))
            prompt_text = source

        text, stopped = _apply_stop(self.reply_for(source), native_request.get("stop") or ())
        max_tokens = native_request.get("max_tokens")
        finish = "stop"
        if max_tokens is not None and len(_tokenize(text)) > int(max_tokens):
            text = " ".join(_tokenize(text)[: int(max_tokens)])
            finish = "length"
        usage = {"in": len(_tokenize(prompt_text)), "out": len(_tokenize(text))}

        if descriptor.stream:
            return self._stream(remote_id, text, finish, usage)
        return {"id": remote_id, "outputs": [{"text": text, "finish": finish}], "usage": usage}

    async def _stream(
        self, remote_id: str, text: str, finish: str, usage: Mapping[str, int]
    ) -> AsyncIterator[Dict[str, Any]]:
        chunks = _word_chunks(text)
        for i, chunk in enumerate(chunks):
            if self.abort_after is not None and i >= self.abort_after:
                raise Unavailable("mock stream aborted")
            last = i == len(chunks) - 1
            delta: Dict[str, Any] = {
                "id": remote_id,
                "index": 0,
                "delta": chunk,
                "finish": finish if last else None,
            }
            if last:
                delta["usage"] = dict(usage)
            await asyncio.sleep(0)
            yield delta


# -----------------------------
# Adapter
# -----------------------------

def _usage(raw: Optional[Mapping[str, int]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    p = int(raw.get("in", 0))
    c = int(raw.get("out", 0))
    return TokenUsage(prompt_tokens=p, completion_tokens=c, total_tokens=p + c)


class MockAIAdapter(BaseAIAdapter):
    """
    A mock adapter over MockTransport.

    capabilities:
        Which capabilities to expose, e.g. ("chat",) for a chat-only backend.
    streaming:
        Expose delta hooks (False simulates a backend that cannot stream).
    """

    def __init__(
        self,
        *,
        transport: Optional[MockTransport] = None,
        capabilities: Iterable[str] = ("completion", "chat", "embed"),
        streaming: bool = True,
        model: str = "mock-model",
        embed_model: Optional[str] = "mock-embed",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("api_url", "mock://local")
        super().__init__(
            name=kwargs.pop("name", "mock-ai"),
            transport=transport or MockTransport(),
            model=model,
            embed_model=embed_model,
            **kwargs,
        )
        self._enabled = frozenset(capabilities)
        self._streaming = bool(streaming)

    @property
    def transport(self) -> MockTransport:
        return self._transport  # type: ignore[return-value]

    def _do_capabilities(self) -> AdapterCapabilities:
        delta = self.parse_delta if self._streaming else None
        hooks: Dict[str, CapabilityHooks] = {
            "completion": CapabilityHooks(self.build_completion, self.parse_response, delta),
            "chat": CapabilityHooks(self.build_chat, self.parse_response, delta),
            "embed": CapabilityHooks(self.build_embed, self.parse_embed),
        }
        return AdapterCapabilities(**{k: v for k, v in hooks.items() if k in self._enabled})

    # ----- request hooks -----------------------------------------------------

    def _common(self, req: Any, config: PromptConfig) -> Dict[str, Any]:
        mc = req.model_config or self.get_model_config()
        return {
            "model": self._model,
            "stop": list(config.stop_sequences),
            "max_tokens": mc.max_tokens,
            "stream": bool(mc.stream),
        }

    def build_completion(self, req: CompletionRequest, config: PromptConfig):
        body = self._common(req, config)
        body["prompt"] = req.prompt
        if req.system_prompt:
            body["system"] = req.system_prompt
        return ApiDescriptor(name="complete", headers={"x-mock-op": "complete"}), body

    def build_chat(self, req: ChatRequest, config: PromptConfig):
        body = self._common(req, config)
        messages = [{"role": t.role, "content": t.text} for t in req.chat_prompt]
        if req.system_prompt:
            messages.insert(0, {"role": "system", "content": req.system_prompt})
        body["messages"] = messages
        return ApiDescriptor(name="chat", headers={"x-mock-op": "chat"}), body

    def build_embed(self, req: EmbedRequest, config: PromptConfig):
        return ApiDescriptor(name="embed"), {"model": req.embed_model, "input": list(req.texts)}

    # ----- response hooks (pure) ---------------------------------------------

    @staticmethod
    def parse_response(resp: Mapping[str, Any]) -> TextResponse:
        return TextResponse(
            remote_id=resp.get("id"),
            results=[
                TextResult(text=o.get("text", ""), id=str(i), finish_reason=o.get("finish"))
                for i, o in enumerate(resp.get("outputs") or [])
            ],
            model_usage=_usage(resp.get("usage")),
        )

    @staticmethod
    def parse_delta(delta: Mapping[str, Any]) -> TextResponse:
        idx = int(delta.get("index", 0))
        results = [TextResult() for _ in range(idx + 1)]
        results[idx] = TextResult(
            text=delta.get("delta", ""),
            id=str(idx),
            finish_reason=delta.get("finish"),
        )
        return TextResponse(
            remote_id=delta.get("id"),
            results=results,
            model_usage=_usage(delta.get("usage")),
        )

    @staticmethod
    def parse_embed(resp: Mapping[str, Any]) -> EmbedResponse:
        vectors = resp.get("vectors") or [[]]
        return EmbedResponse(
            remote_id=resp.get("id"),
            embedding=tuple(vectors[0]),
            model_usage=_usage(resp.get("usage")),
        )


__all__ = ["MockTransport", "MockAIAdapter"]
