"""
Assembles streaming tool-call deltas into complete ToolCallRequest objects.

Design goals:
  - Accumulate partial ``ToolCallRequest`` deltas keyed by ``index``.
  - ``id`` and ``type`` are taken from the first delta that carries them,
    later non-null values overwrite; ``function.arguments`` fragments are
    concatenated in arrival order.
  - Arguments are only validated once the turn has finished: on
    :meth:`ToolCallAssembler.finalize` the accumulated string is parsed as
    JSON.  If that fails the optional *repair* coroutine is asked to rewrite
    it; if that fails too ``UnparseableToolArguments`` is raised.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable

from nbchat.errors import UnparseableToolArguments
from nbchat.llm.types import (
    FinishSignal,
    FunctionCall,
    StreamUnit,
    ToolCallDeltaBatch,
    ToolCallRequest,
)
from nbchat.types import FinishReason

logger = logging.getLogger(__name__)

JsonRepair = Callable[[str], Awaitable[object]]


class ToolCallAssembler:
    """Buffers tool-call deltas and emits finished ``ToolCallRequest`` objects."""

    def __init__(self, repair: JsonRepair | None = None) -> None:
        self._buf: dict[int, ToolCallRequest] = {}
        self._repair = repair

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def pending(self) -> bool:
        return bool(self._buf)

    def feed(self, delta: ToolCallRequest) -> None:
        """Merge a single delta into the buffer for its ``index``."""
        buf = self._buf.get(delta.index)
        if buf is None:
            self._buf[delta.index] = ToolCallRequest(
                index=delta.index,
                id=delta.id,
                type=delta.type,
                function=FunctionCall(
                    name=delta.function.name,
                    arguments=delta.function.arguments or "",
                ),
            )
            return

        if delta.id:
            buf.id = delta.id
        if delta.type:
            buf.type = delta.type
        if delta.function.name:
            buf.function.name = delta.function.name
        if delta.function.arguments:
            buf.function.arguments += delta.function.arguments

    def feed_batch(self, batch: ToolCallDeltaBatch) -> None:
        for delta in batch.deltas:
            self.feed(delta)

    async def finalize(self) -> list[ToolCallRequest]:
        """
        Validate and return every buffered call, ordered by index.

        The buffer is cleared whether or not validation succeeds.
        """
        calls: list[ToolCallRequest] = []
        try:
            for idx in sorted(self._buf):
                calls.append(await self._finalize(self._buf[idx]))
        finally:
            self._buf.clear()
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finalize(self, call: ToolCallRequest) -> ToolCallRequest:
        raw_args = call.function.arguments
        if not raw_args:
            parsed: object = {}
        else:
            try:
                parsed = json.loads(raw_args)
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning(
                    "Unable to parse JSON arguments for tool call index=%d: %s",
                    call.index,
                    exc,
                )
                if self._repair is None:
                    raise UnparseableToolArguments(call.index, raw_args, exc) from exc
                try:
                    parsed = await self._repair(raw_args)
                except Exception as repair_exc:
                    raise UnparseableToolArguments(
                        call.index, raw_args, repair_exc
                    ) from repair_exc

        # Re-serialize to drop concatenation artifacts such as stray whitespace.
        call.function.arguments = json.dumps(parsed)
        call.type = call.type or "function"
        call.id = call.id or f"call_{call.index}"
        return call


async def merge_tool_calls(
    units: AsyncIterable[StreamUnit],
    assembler: ToolCallAssembler,
) -> AsyncIterator[StreamUnit]:
    """
    Absorb ``ToolCallDeltaBatch`` units into *assembler*.

    Once a ``FinishSignal`` arrives (or the stream ends) any buffered calls
    are finalized and emitted as one merged ``ToolCallDeltaBatch`` ahead of
    the signal.  Other units pass through unchanged.
    """
    async for unit in units:
        if isinstance(unit, ToolCallDeltaBatch):
            assembler.feed_batch(unit)
            continue
        if isinstance(unit, FinishSignal) and unit.reason == FinishReason.CANCELLED:
            assembler.reset()
        elif isinstance(unit, FinishSignal) and assembler.pending:
            calls = await assembler.finalize()
            logger.info(
                "Tool calls: %s",
                json.dumps([c.to_wire() for c in calls], indent=2),
            )
            yield ToolCallDeltaBatch(tuple(calls))
        yield unit

    if assembler.pending:
        yield ToolCallDeltaBatch(tuple(await assembler.finalize()))
