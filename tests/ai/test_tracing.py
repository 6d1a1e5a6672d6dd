# SPDX-License-Identifier: Apache-2.0
"""
Tracing: one step per call, sink isolation, observer delivery.

Covers:
  • Exactly one TraceStep per completion / chat / embed call
  • trace_id and session_id come from CallOptions (trace_id generated if absent)
  • A failing sink never fails the call
  • The observer sees every step; disable_log (per call or adapter-wide) skips both
  • Builders refuse to build an uninitialized step
  • LoggingTraceSink writes one JSON line per step
"""

import json
import logging

import pytest

from textgen_sdk.ai import (
    CallOptions,
    ChatRequest,
    ChatTurn,
    CompletionRequest,
    EmbedRequest,
    LoggingTraceSink,
    ModelConfig,
    ModelInfo,
    TraceError,
    TraceStepBuilder,
    TokenUsage,
)
from textgen_sdk.ai.tracing import TextRequestBuilder, TextResponseBuilder
from textgen_sdk.mock import MockAIAdapter, MockTransport

pytestmark = pytest.mark.asyncio


class BrokenSink:
    async def log(self, step):
        raise ConnectionError("collector unreachable")


async def test_one_step_per_call(adapter, trace_sink):
    await adapter.completion(CompletionRequest(prompt="2+2=", system_prompt="math"))
    await adapter.chat(ChatRequest(chat_prompt=[ChatTurn("user", "hi")]))

    completion, chat = trace_sink.steps
    assert completion.request.kind == "completion"
    assert completion.request.prompt == "2+2="
    assert completion.request.system_prompt == "math"
    assert completion.response.results[0].text == "4"
    assert completion.response.model_usage == TokenUsage(1, 1, 2)
    assert chat.request.kind == "chat"
    assert chat.request.chat_prompt == (ChatTurn("user", "hi"),)


async def test_trace_and_session_ids(adapter, trace_sink):
    res = await adapter.completion(
        CompletionRequest(prompt="x"), CallOptions(trace_id="t-1", session_id="s-1")
    )
    await adapter.completion(CompletionRequest(prompt="y"))

    first, second = trace_sink.steps
    assert first.trace_id == "t-1"
    assert first.session_id == "s-1"
    assert res.session_id == "s-1"
    assert second.trace_id and second.trace_id != "t-1"
    assert second.session_id is None
    assert first.created_at.endswith("+00:00")


async def test_model_info_and_config_on_trace(trace_sink):
    adapter = MockAIAdapter(
        trace_sink=trace_sink,
        model="priced",
        model_info=[ModelInfo(name="priced", prompt_token_cost_per_1k=0.5)],
        model_config=ModelConfig(max_tokens=64, temperature=0.2),
    )
    await adapter.completion(CompletionRequest(prompt="x"))

    (step,) = trace_sink.steps
    assert step.request.model_info.name == "priced"
    assert step.request.model_info.provider == "mock-ai"
    assert step.request.model_info.prompt_token_cost_per_1k == 0.5
    assert step.request.model_config.stream is False


async def test_sink_failure_is_swallowed(caplog):
    observed = []
    adapter = MockAIAdapter(trace_sink=BrokenSink(), observer=observed.append)

    with caplog.at_level(logging.WARNING, logger="textgen_sdk.ai.tracing"):
        res = await adapter.completion(CompletionRequest(prompt="still works"))

    assert res.text == "echo: still works"
    assert len(observed) == 1, "observer still runs after a sink failure"
    assert any("trace sink delivery failed" in r.getMessage() for r in caplog.records)


async def test_observer_receives_every_step(trace_sink):
    observed = []
    adapter = MockAIAdapter(trace_sink=trace_sink, observer=observed.append)

    await adapter.completion(CompletionRequest(prompt="a"))
    await adapter.embed(EmbedRequest(texts=["b"]))

    assert observed == trace_sink.steps
    assert [s.request.kind for s in observed] == ["completion", "embed"]


async def test_observer_exception_propagates(trace_sink):
    def observer(step):
        raise RuntimeError("observer bug")

    adapter = MockAIAdapter(trace_sink=trace_sink, observer=observer)
    with pytest.raises(RuntimeError, match="observer bug"):
        await adapter.completion(CompletionRequest(prompt="a"))


async def test_disable_log_per_call_and_adapter_wide(trace_sink):
    observed = []
    adapter = MockAIAdapter(trace_sink=trace_sink, observer=observed.append)

    await adapter.completion(CompletionRequest(prompt="a"), CallOptions(disable_log=True))
    assert trace_sink.steps == []

    adapter.set_options(disable_log=True)
    await adapter.chat(ChatRequest(chat_prompt=[ChatTurn("user", "b")]))
    await adapter.embed(EmbedRequest(texts=["c"]))
    assert trace_sink.steps == []
    assert observed == []

    adapter.set_options(disable_log=False)
    await adapter.completion(CompletionRequest(prompt="d"))
    assert len(trace_sink.steps) == 1


async def test_embed_trace(trace_sink):
    transport = MockTransport(embed_dims=4)
    adapter = MockAIAdapter(
        transport=transport,
        trace_sink=trace_sink,
        model_info=[ModelInfo(name="mock-embed")],
    )

    res = await adapter.embed(EmbedRequest(texts="hello world"))

    assert len(res.embedding) == 4
    assert res.texts == ("hello world",)
    assert transport.calls[0][1]["model"] == "mock-embed"
    (step,) = trace_sink.steps
    assert step.request.kind == "embed"
    assert step.request.texts == ("hello world",)
    assert step.request.embed_model_info.name == "mock-embed"
    assert step.response.embed_model_usage == TokenUsage(2, 0, 2)
    assert step.response.embed_model_response_time_ms is not None
    assert step.response.model_usage is None


async def test_builders_refuse_uninitialized_steps():
    with pytest.raises(TraceError, match="trace not initialized"):
        TraceStepBuilder().build()
    with pytest.raises(TraceError):
        TraceStepBuilder().set_request(TextRequestBuilder()).set_response(TextResponseBuilder()).build()


async def test_logging_sink_writes_json_line(caplog):
    adapter = MockAIAdapter(trace_sink=LoggingTraceSink())

    with caplog.at_level(logging.INFO, logger="textgen_sdk.trace"):
        await adapter.completion(CompletionRequest(prompt="x"), CallOptions(trace_id="t-9"))

    lines = [r.getMessage() for r in caplog.records if r.name == "textgen_sdk.trace"]
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["trace_id"] == "t-9"
    assert payload["request"]["prompt"] == "x"
