"""
Normalize raw provider stream events into :data:`StreamUnit` values.

A raw event is the decoded JSON payload of one SSE ``data:`` line.  The
normalizer looks at ``choices[0]`` only and emits, per event:

* ``FinishSignal`` for a terminal ``finish_reason``,
* ``TextFragment`` for a non-empty ``delta.content``,
* ``ToolCallDeltaBatch`` for ``delta.tool_calls``,

and nothing for heartbeats.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator

from nbchat.cancellation import CancellationToken
from nbchat.errors import UnhandledFinishReason
from nbchat.llm.types import (
    FinishSignal,
    FunctionCall,
    StreamUnit,
    TextFragment,
    ToolCallDeltaBatch,
    ToolCallRequest,
)
from nbchat.types import FinishReason

logger = logging.getLogger(__name__)

# finish_reason values that end the sequence.
_TERMINAL = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
}

# finish_reason values meaning "the model wants to call tools".
_TOOL_REASONS = {"tool_calls", "function_call"}


def parse_tool_deltas(raw_tcs: list[dict]) -> tuple[ToolCallRequest, ...]:
    """Convert ``delta.tool_calls`` wire dicts into partial ``ToolCallRequest``s."""
    deltas = []
    for pos, raw_tc in enumerate(raw_tcs):
        func = raw_tc.get("function") or {}
        deltas.append(
            ToolCallRequest(
                index=raw_tc.get("index", pos),
                id=raw_tc.get("id"),
                type=raw_tc.get("type"),
                function=FunctionCall(
                    name=func.get("name"),
                    arguments=func.get("arguments") or "",
                ),
            )
        )
    return tuple(deltas)


def _content_units(delta: dict) -> list[StreamUnit]:
    units: list[StreamUnit] = []
    raw_tcs = delta.get("tool_calls")
    if raw_tcs:
        units.append(ToolCallDeltaBatch(parse_tool_deltas(raw_tcs)))
    content = delta.get("content")
    if content:
        units.append(TextFragment(content))
    return units


async def normalize_stream(
    events: AsyncIterable[dict],
    cancel: CancellationToken,
) -> AsyncIterator[StreamUnit]:
    """
    Yield ``StreamUnit`` values for *events*.

    When *cancel* is set, ``FinishSignal(CANCELLED)`` is yielded for every
    further event; the consumer decides when to stop iterating.

    Raises ``UnhandledFinishReason`` for a ``finish_reason`` outside the
    known set.
    """
    async for event in events:
        if cancel.is_cancelled:
            yield FinishSignal(FinishReason.CANCELLED)
            continue

        choices = event.get("choices")
        if not choices:
            continue

        choice = choices[0]
        delta = choice.get("delta") or {}
        finish_reason = choice.get("finish_reason")

        if finish_reason is None:
            for unit in _content_units(delta):
                yield unit
            continue

        # Some servers put the last content in the finishing event.
        for unit in _content_units(delta):
            yield unit

        if finish_reason in _TERMINAL:
            logger.info("finish_reason=%s", finish_reason)
            yield FinishSignal(_TERMINAL[finish_reason])
            return

        if finish_reason in _TOOL_REASONS:
            logger.info("finish_reason=%s", finish_reason)
            yield FinishSignal(FinishReason.TOOLS_CALL)
            continue

        raise UnhandledFinishReason(finish_reason)

    # The transport stops reading once cancelled; surface that explicitly.
    if cancel.is_cancelled:
        yield FinishSignal(FinishReason.CANCELLED)
