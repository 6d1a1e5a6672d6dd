# SPDX-License-Identifier: Apache-2.0
"""
Example 01: Completion and chat over the mock backend

Runs one completion and one chat call, then prints the text, token usage
and the trace step recorded for each call.
"""

import asyncio

from textgen_sdk.ai import ChatRequest, ChatTurn, CompletionRequest, InMemoryTraceSink
from textgen_sdk.mock import MockAIAdapter, MockTransport


async def main() -> None:
    sink = InMemoryTraceSink()
    adapter = MockAIAdapter(
        transport=MockTransport(replies={"2+2=": "4"}),
        trace_sink=sink,
    )

    res = await adapter.completion(CompletionRequest(prompt="2+2="))
    print(f"completion: {res.text!r}  usage={res.model_usage}")

    res = await adapter.chat(
        ChatRequest(
            chat_prompt=[ChatTurn("user", "Summarize the adapter layer")],
            system_prompt="Answer in one line.",
        )
    )
    print(f"chat:       {res.text!r}  usage={res.model_usage}")

    for step in sink.steps:
        print(f"trace {step.trace_id[:8]} kind={step.request.kind} "
              f"ms={step.response.model_response_time_ms:.2f}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
