"""
Segmentation state machine.

Turns a coalesced stream of text fragments into document units: prose goes
into markdown units, fenced code into code units tagged with the fence's
language.  Every unit created here is tagged with the ``assistant`` role so
it is recognised as model output on the next request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, Callable

from nbchat.cancellation import CancellationToken
from nbchat.document.base import Document, UnitKind
from nbchat.llm.types import (
    FinishSignal,
    StreamUnit,
    TextFragment,
    ToolCallDeltaBatch,
    ToolCallRequest,
)
from nbchat.types import FinishReason, Role

logger = logging.getLogger(__name__)

FENCE = "```"

# ```python<newline>; any identifier-ish language tag is accepted.
FENCE_OPEN = re.compile(r"```(?P<language>[\w+#.-]+)[ \t]*\r?\n")

# A fence at the very end of a fragment that may still grow into FENCE_OPEN.
FENCE_TAIL = re.compile(r"```[\w+#.-]*[ \t]*\r?\Z")


class SegmentState(str, Enum):
    UNDETERMINED = "undetermined"
    IN_PROSE = "in_prose"
    IN_CODE = "in_code"


@dataclass
class SegmentationResult:
    """How a stream ended and where writing stopped."""

    reason: FinishReason
    last_index: int
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


class CellSegmenter:
    """
    Writes streamed text into *document*, starting after *start_index*.

    The segmenter keeps its state between calls to :meth:`consume`.  Feeding
    it a second stream (after ``length`` or a tool-call round trip) keeps
    appending to the last unit it wrote instead of opening a new one.

    Parameters
    ----------
    document:
        The document captured when the operation started.
    start_index:
        Index of the unit the completion was requested for.  New units are
        inserted below it.
    cancel:
        Checked before every unit is handled.
    progress:
        Optional callback receiving every piece of text written.
    """

    def __init__(
        self,
        document: Document,
        start_index: int,
        cancel: CancellationToken | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        self.document = document
        self.index = start_index
        self.cancel = cancel or CancellationToken()
        self.progress = progress
        self.state = SegmentState.UNDETERMINED
        self._owns_current = False
        self._held = ""

    async def consume(self, units: AsyncIterable[StreamUnit]) -> SegmentationResult:
        """
        Drive the state machine until a finish signal or a tool-call batch.

        A stream that ends without either is treated as truncated and
        reported as ``FinishReason.LENGTH``.  After ``LENGTH`` the last unit
        is left in place, blank or not, so a continuation can resume in it;
        call :meth:`close` once no further stream follows.
        """
        async for unit in units:
            if self.cancel.is_cancelled:
                self._held = ""
                await self._drop_blank_unit()
                return SegmentationResult(FinishReason.CANCELLED, self.index)

            if isinstance(unit, TextFragment):
                await self._feed(unit.text)
            elif isinstance(unit, ToolCallDeltaBatch):
                await self._flush_held()
                return SegmentationResult(
                    FinishReason.TOOLS_CALL, self.index, list(unit.deltas)
                )
            elif isinstance(unit, FinishSignal):
                if unit.reason != FinishReason.LENGTH:
                    await self.close()
                return SegmentationResult(unit.reason, self.index)

        logger.warning("Stream ended without a finish signal")
        return SegmentationResult(FinishReason.LENGTH, self.index)

    async def close(self) -> None:
        """Write any held-back text and delete a blank trailing unit."""
        await self._flush_held()
        await self._drop_blank_unit()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _feed(self, text: str) -> None:
        text = self._held + text
        self._held = ""
        tail = FENCE_TAIL.search(text)
        if tail:
            self._held = text[tail.start():]
            text = text[: tail.start()]
        if text:
            await self._handle_text(text)

    async def _flush_held(self) -> None:
        if self._held:
            text, self._held = self._held, ""
            await self._handle_text(text)

    async def _handle_text(self, text: str) -> None:
        match = FENCE_OPEN.search(text)
        if match:
            before, after = text[: match.start()], text[match.end():]
            if before:
                await self._append(before)
            await self._new_unit(UnitKind.CODE, match.group("language").lower())
            self.state = SegmentState.IN_CODE
            if after:
                await self._handle_text(after)
            return

        if self.state == SegmentState.IN_CODE and FENCE in text:
            before, _, after = text.partition(FENCE)
            if before:
                await self._append(before)
            await self._new_unit(UnitKind.MARKUP, "markdown")
            self.state = SegmentState.IN_PROSE
            if after:
                await self._handle_text(after)
            return

        await self._append(text)

    async def _append(self, text: str) -> None:
        if self.state == SegmentState.UNDETERMINED:
            await self._new_unit(UnitKind.MARKUP, "markdown")
            self.state = SegmentState.IN_PROSE
        await self.document.append_text(self.index, text)
        if self.progress is not None:
            self.progress(text)

    async def _new_unit(self, kind: UnitKind, language: str) -> None:
        await self._drop_blank_unit()
        self.index = await self.document.insert_unit(self.index, kind, language)
        await self.document.set_role_tag(self.index, Role.ASSISTANT)
        self._owns_current = True
        logger.debug("Created %s unit %d (%s)", kind.value, self.index, language)

    async def _drop_blank_unit(self) -> None:
        if not self._owns_current:
            return
        units = await self.document.read_units(self.index, self.index + 1)
        if units and not units[0].content.strip():
            await self.document.delete_units(self.index, self.index + 1)
            logger.debug("Deleted blank trailing unit %d", self.index)
            self.index -= 1
            self.state = SegmentState.UNDETERMINED
            self._owns_current = False
