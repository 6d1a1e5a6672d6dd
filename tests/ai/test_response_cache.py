# SPDX-License-Identifier: Apache-2.0
"""
Response cache: content hashing, TTL expiry, and cache-hit bypass.

Covers:
  • Structurally identical requests hash equal; any field change alters the hash
  • Function executors do not participate in the hash
  • Entries are absent once ttl has elapsed; set() overwrites unconditionally
  • Concurrent get/set on one key never observe a torn entry
  • Replayed completion/chat with cache=True dispatches once
  • Cache hits skip tracing and function execution; streamed hits replay one delta
  • Stop sequences participate in the cache key
  • The "2+2=" walk-through: hit within the TTL, re-dispatch after it
"""

import asyncio

import pytest

from textgen_sdk.ai import (
    CallOptions,
    ChatRequest,
    ChatTurn,
    CompletionRequest,
    FunctionDeclaration,
    ModelConfig,
    NoopCache,
    ResponseStream,
    TextResponse,
    TextResult,
    hash_request,
)
from textgen_sdk.mock import MockAIAdapter

pytestmark = pytest.mark.asyncio


async def test_hash_is_structural_not_identity():
    a = CompletionRequest(prompt="2+2=", model_config=ModelConfig(temperature=0.0))
    b = CompletionRequest(prompt="2+2=", model_config=ModelConfig(temperature=0.0))
    assert a is not b
    assert hash_request(a) == hash_request(b)


async def test_hash_changes_with_any_field():
    base = ChatRequest(
        chat_prompt=[ChatTurn("user", "hi")],
        system_prompt="be brief",
        model_config=ModelConfig(max_tokens=10),
    )
    variants = [
        ChatRequest(chat_prompt=[ChatTurn("user", "hi!")], system_prompt="be brief",
                    model_config=ModelConfig(max_tokens=10)),
        ChatRequest(chat_prompt=[ChatTurn("user", "hi")], system_prompt="be long",
                    model_config=ModelConfig(max_tokens=10)),
        ChatRequest(chat_prompt=[ChatTurn("user", "hi")], system_prompt="be brief",
                    model_config=ModelConfig(max_tokens=11)),
        ChatRequest(chat_prompt=[ChatTurn("assistant", "hi")], system_prompt="be brief",
                    model_config=ModelConfig(max_tokens=10)),
    ]
    hashes = {hash_request(v) for v in variants}
    assert hash_request(base) not in hashes
    assert len(hashes) == len(variants)


async def test_hash_distinguishes_completion_from_chat_shapes():
    assert hash_request(CompletionRequest(prompt="x")) != hash_request(
        ChatRequest(chat_prompt=[ChatTurn("user", "x")])
    )


async def test_hash_ignores_function_executor():
    f1 = FunctionDeclaration("now", "current time", executor=lambda _: "noon")
    f2 = FunctionDeclaration("now", "current time", executor=lambda _: "midnight")
    assert hash_request(CompletionRequest(prompt="t", functions=[f1])) == hash_request(
        CompletionRequest(prompt="t", functions=[f2])
    )
    f3 = FunctionDeclaration("now", "the current time")
    assert hash_request(CompletionRequest(prompt="t", functions=[f1])) != hash_request(
        CompletionRequest(prompt="t", functions=[f3])
    )


async def test_entry_expires_after_ttl(cache, clock):
    value = TextResponse(results=[TextResult(text="4")])
    await cache.set("k", value, 5)

    clock.advance(4.999)
    assert await cache.get("k") is value

    clock.advance(0.002)
    assert await cache.get("k") is None
    assert len(cache) == 0, "expired entry should be dropped on read"


async def test_set_overwrites_and_missing_key_is_absent(cache):
    assert await cache.get("missing") is None
    await cache.set("k", "first", 60)
    await cache.set("k", "second", 60)
    assert await cache.get("k") == "second"


async def test_concurrent_get_set_never_torn(cache):
    values = [TextResponse(results=[TextResult(text=str(i))]) for i in range(50)]

    async def writer(v):
        await cache.set("same", v, 60)

    async def reader():
        got = await cache.get("same")
        assert got is None or got in values

    await asyncio.gather(*(writer(v) for v in values), *(reader() for _ in range(50)))
    assert await cache.get("same") is values[-1], "last set wins"


async def test_replayed_completion_dispatches_once(adapter, transport):
    req = CompletionRequest(prompt="2+2=")
    opts = CallOptions(cache=True)

    first = await adapter.completion(req, opts)
    second = await adapter.completion(CompletionRequest(prompt="2+2="), opts)

    assert transport.dispatch_count == 1
    assert second == first
    assert second.text == "4"


async def test_replayed_chat_dispatches_once(adapter, transport):
    req = ChatRequest(chat_prompt=[ChatTurn("user", "hello")])
    opts = CallOptions(cache=True)

    first = await adapter.chat(req, opts)
    second = await adapter.chat(req, opts)

    assert transport.dispatch_count == 1
    assert second == first


async def test_cache_disabled_dispatches_every_time(adapter, transport):
    req = CompletionRequest(prompt="2+2=")
    await adapter.completion(req)
    await adapter.completion(req)
    assert transport.dispatch_count == 2


async def test_cache_hit_skips_trace_and_functions(adapter, trace_sink, metrics):
    calls = []
    fn = FunctionDeclaration("ping", "ping", executor=lambda args: calls.append(args) or "pong")
    adapter.transport.replies["use ping"] = 'Function Call: ping({"n": 1})'
    req = CompletionRequest(prompt="use ping", functions=[fn])

    first = await adapter.completion(req, CallOptions(cache=True))
    assert len(calls) == 1
    assert len(trace_sink.steps) == 1

    second = await adapter.completion(req, CallOptions(cache=True))
    assert len(calls) == 1, "executor must not run again on a cache hit"
    assert len(trace_sink.steps) == 1, "no trace is recorded on a cache hit"
    assert second == first
    assert metrics.counters.get("cache_hits") == 1


async def test_cached_value_is_isolated_from_caller_mutation(adapter):
    req = CompletionRequest(prompt="2+2=")
    first = await adapter.completion(req, CallOptions(cache=True))
    first.results[0].text = "mutated"

    again = await adapter.completion(req, CallOptions(cache=True))
    assert again.text == "4"


async def test_two_plus_two_walkthrough(adapter, transport, clock):
    req = CompletionRequest(prompt="2+2=", model_config=None)
    opts = CallOptions(cache=True, cache_max_age_seconds=5)

    first = await adapter.completion(req, opts)
    assert [r.text for r in first.results] == ["4"]
    assert transport.dispatch_count == 1

    clock.advance(4)
    second = await adapter.completion(req, opts)
    assert second == first
    assert transport.dispatch_count == 1

    clock.advance(2)  # 6s after the first call
    third = await adapter.completion(req, opts)
    assert third.text == "4"
    assert transport.dispatch_count == 2


async def test_streamed_result_is_cached_after_drain(adapter, transport, trace_sink):
    req = ChatRequest(chat_prompt=[ChatTurn("user", "stream then cache")])
    opts = CallOptions(cache=True, stream=True)

    stream = await adapter.chat(req, opts)
    async for _ in stream:
        pass
    final = await stream.aggregate()

    cached = await adapter.chat(req, opts)
    assert transport.dispatch_count == 1
    assert isinstance(cached, ResponseStream), "a streaming call gets a stream even on a cache hit"
    deltas = [d async for d in cached]
    assert deltas == [final]
    assert await cached.aggregate() == final
    assert len(trace_sink.steps) == 1, "replaying a cached stream records no trace"


async def test_cached_stream_replay_does_not_run_functions(adapter, transport):
    calls = []
    fn = FunctionDeclaration("ping", "ping", executor=lambda args: calls.append(args) or "pong")
    transport.replies["use ping"] = 'Function Call: ping({"n": 1})'
    req = CompletionRequest(prompt="use ping", functions=[fn])
    opts = CallOptions(cache=True, stream=True)

    first = await adapter.completion(req, opts)
    async for _ in first:
        pass
    final = await first.aggregate()
    assert len(calls) == 1

    replay = await adapter.completion(req, opts)
    async for _ in replay:
        pass
    assert await replay.aggregate() == final
    assert len(calls) == 1
    assert transport.dispatch_count == 1


async def test_stop_sequences_participate_in_cache_key(adapter, transport):
    transport.replies["count"] = "one two three four"
    req = CompletionRequest(prompt="count")

    first = await adapter.completion(req, CallOptions(cache=True, stop_sequences=("three",)))
    second = await adapter.completion(req, CallOptions(cache=True, stop_sequences=("two",)))

    assert first.text == "one two "
    assert second.text == "one "
    assert transport.dispatch_count == 2


async def test_hash_changes_with_prompt_config():
    req = CompletionRequest(prompt="count")
    plain = hash_request(req, CallOptions().prompt_config())
    stopped = hash_request(req, CallOptions(stop_sequences=("two",)).prompt_config())
    assert plain != stopped
    assert stopped == hash_request(req, CallOptions(stop_sequences=("two",)).prompt_config())


async def test_noop_cache_disables_caching(transport):
    adapter = MockAIAdapter(transport=transport, cache=NoopCache())
    req = CompletionRequest(prompt="2+2=")
    await adapter.completion(req, CallOptions(cache=True))
    await adapter.completion(req, CallOptions(cache=True))
    assert transport.dispatch_count == 2
