# SPDX-License-Identifier: Apache-2.0
"""
Example 02: Streaming with an aggregate

Prints deltas as they arrive, then awaits the merged result, which is only
available once the stream has been drained.
"""

import asyncio

from textgen_sdk.ai import CallOptions, ChatRequest, ChatTurn
from textgen_sdk.mock import MockAIAdapter, MockTransport


async def main() -> None:
    adapter = MockAIAdapter(
        transport=MockTransport(replies={"stream please": "one word at a time, as promised"}),
    )

    stream = await adapter.chat(
        ChatRequest(chat_prompt=[ChatTurn("user", "stream please")]),
        CallOptions(stream=True, session_id="demo"),
    )
    async for delta in stream:
        print(delta.text, end="|", flush=True)
    print()

    final = await stream.aggregate()
    print(f"aggregate: {final.text!r} ({stream.delta_count} deltas, usage={final.model_usage})")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
