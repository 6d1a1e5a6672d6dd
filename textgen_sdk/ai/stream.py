# textgen_sdk/ai/stream.py
# SPDX-License-Identifier: Apache-2.0
"""
Stream merger.

A ResponseStream turns a native delta iterator into two outputs:

1. a lazy, forward-only async iterator of unified partial TextResponse
   objects, each forwarded as soon as it is converted, and
2. an aggregate handle (``await stream.aggregate()``) that resolves to the
   merged TextResponse only after the iterator has been fully drained.

States:
    OPEN    -> deltas are being forwarded
    CLOSED  -> native stream ended or the consumer stopped

The completion callback (function invocation, trace, cache write) runs once,
only when the native stream ends normally. Closing early, cancelling the
consuming task, or an upstream error closes the stream without running it;
the aggregate handle then raises StreamAborted.
"""

from __future__ import annotations

import asyncio
import copy
import enum
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from textgen_sdk.ai.errors import AIAdapterError
from textgen_sdk.ai.types import TextResponse, TextResult, TokenUsage

LOG = logging.getLogger(__name__)


class StreamAborted(AIAdapterError):
    """The stream closed before the native stream ended; no aggregate exists."""
    def __init__(self, message: str = "stream closed before completion", **kwargs: Any):
        kwargs.setdefault("code", "STREAM_ABORTED")
        super().__init__(message, **kwargs)


class StreamState(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


def merge_text_responses(responses: Sequence[TextResponse]) -> TextResponse:
    """
    Fold partial responses into one.

    Per result index: texts concatenated in arrival order, last non-empty
    id and finish reason win, function records appended. Usage counters are
    summed. session_id / remote_id: last non-empty wins.
    """
    slots: Dict[int, TextResult] = {}
    usage: Optional[TokenUsage] = None
    embed_usage: Optional[TokenUsage] = None
    session_id: Optional[str] = None
    remote_id: Optional[str] = None

    for resp in responses:
        for idx, part in enumerate(resp.results):
            slot = slots.get(idx)
            if slot is None:
                slot = slots[idx] = TextResult()
            slot.text += part.text or ""
            if part.id:
                slot.id = part.id
            if part.finish_reason:
                slot.finish_reason = part.finish_reason
            slot.functions.extend(part.functions)

        if resp.model_usage is not None:
            usage = resp.model_usage if usage is None else usage + resp.model_usage
        if resp.embed_model_usage is not None:
            embed_usage = (
                resp.embed_model_usage if embed_usage is None else embed_usage + resp.embed_model_usage
            )
        session_id = resp.session_id or session_id
        remote_id = resp.remote_id or remote_id

    return TextResponse(
        results=[slots[i] for i in sorted(slots)],
        model_usage=usage,
        embed_model_usage=embed_usage,
        session_id=session_id,
        remote_id=remote_id,
    )


class ResponseStream:
    """
    Live partial results plus an aggregate available after drain.

    Single-consumer: iterate it once. Do not await aggregate() from the same
    task before draining the iterator.

        stream = await adapter.chat(req, CallOptions(stream=True))
        async for delta in stream:
            print(delta.text, end="")
        final = await stream.aggregate()
    """

    def __init__(
        self,
        native: AsyncIterator[Any],
        convert: Callable[[Any], TextResponse],
        *,
        on_complete: Callable[[TextResponse], Awaitable[TextResponse]],
        session_id: Optional[str] = None,
    ) -> None:
        self._native = native
        self._convert = convert
        self._on_complete = on_complete
        self._session_id = session_id
        self._state = StreamState.OPEN
        self._aggregate: asyncio.Future = asyncio.get_running_loop().create_future()
        self._deltas: List[TextResponse] = []
        self._agen = self._run()

    @classmethod
    def replay(cls, response: TextResponse, *, session_id: Optional[str] = None) -> "ResponseStream":
        """A stream of one delta carrying a finished response; its aggregate is that response."""
        async def _one() -> AsyncIterator[TextResponse]:
            yield copy.deepcopy(response)

        async def _done(_merged: TextResponse) -> TextResponse:
            return response

        return cls(_one(), lambda delta: delta, on_complete=_done, session_id=session_id)

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def delta_count(self) -> int:
        return len(self._deltas)

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> TextResponse:
        return await self._agen.__anext__()

    async def __aenter__(self) -> "ResponseStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop consuming; if the native stream had not ended, abort the aggregate."""
        await self._agen.aclose()
        if self._state is StreamState.OPEN:
            # Never started; the generator body did not run.
            self._close(aborted=True)
            await self._close_native()

    async def aggregate(self) -> TextResponse:
        """Merged result; raises StreamAborted if the stream closed early."""
        try:
            return await asyncio.shield(self._aggregate)
        except asyncio.CancelledError:
            if self._aggregate.cancelled():
                raise StreamAborted() from None
            raise

    async def _run(self) -> AsyncIterator[TextResponse]:
        try:
            async for native_delta in self._native:
                delta = self._convert(native_delta)
                delta.session_id = self._session_id
                self._deltas.append(delta)
                yield delta
        except BaseException:
            self._close(aborted=True)
            await self._close_native()
            raise

        try:
            final = await self._on_complete(merge_text_responses(self._deltas))
        except BaseException:
            self._close(aborted=True)
            raise
        self._close(aborted=False, final=final)

    def _close(self, *, aborted: bool, final: Optional[TextResponse] = None) -> None:
        if self._state is StreamState.CLOSED:
            return
        self._state = StreamState.CLOSED
        if aborted:
            LOG.debug("stream closed after %d deltas without completion", len(self._deltas))
            self._aggregate.cancel()
        else:
            self._aggregate.set_result(final)

    async def _close_native(self) -> None:
        aclose = getattr(self._native, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            LOG.debug("native stream aclose() failed", exc_info=True)


__all__ = [
    "StreamAborted",
    "StreamState",
    "merge_text_responses",
    "ResponseStream",
]
