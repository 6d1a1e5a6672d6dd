# SPDX-License-Identifier: Apache-2.0
"""
Example 03: Response cache and inline function calls

The first call dispatches, runs the declared function and records a trace;
the replay is served from the cache without any of that.
"""

import asyncio

from textgen_sdk.ai import CallOptions, CompletionRequest, FunctionDeclaration, InMemoryMetrics
from textgen_sdk.mock import MockAIAdapter, MockTransport


def get_time(args):
    return {"tz": (args or {}).get("tz", "UTC"), "time": "12:00"}


async def main() -> None:
    transport = MockTransport(replies={"what time is it?": 'Function Call: get_time({"tz": "CET"})'})
    metrics = InMemoryMetrics()
    adapter = MockAIAdapter(transport=transport, metrics=metrics)

    req = CompletionRequest(
        prompt="what time is it?",
        functions=[FunctionDeclaration("get_time", "current time", executor=get_time)],
    )
    opts = CallOptions(cache=True, cache_max_age_seconds=30)

    first = await adapter.completion(req, opts)
    for call in first.results[0].functions:
        print(f"ran {call.name}({call.args}) -> {call.result}")

    await adapter.completion(req, opts)
    print(f"dispatches={transport.dispatch_count} counters={metrics.counters}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
