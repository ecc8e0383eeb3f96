"""Tests for nbchat.segmentation.CellSegmenter."""

from __future__ import annotations

from nbchat.cancellation import CancellationToken
from nbchat.document.base import DocumentUnit, UnitKind
from nbchat.document.notebook import Notebook
from nbchat.llm.coalescer import coalesce
from nbchat.llm.types import FinishSignal, TextFragment, ToolCallDeltaBatch, ToolCallRequest
from nbchat.segmentation import CellSegmenter, SegmentState
from nbchat.types import FinishReason
from tests.mock_providers import aiter_list


def prompt_notebook():
    return Notebook([DocumentUnit(content="Say hello", role_tag="user")])


def fragments(*texts, reason=FinishReason.STOP):
    units = [TextFragment(t) for t in texts]
    if reason is not None:
        units.append(FinishSignal(reason))
    return units


def summary(nb):
    return [(u.kind, u.content, u.role_tag) for u in nb.units[1:]]


class TestScenario:
    async def test_prose_code_prose(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        units = fragments("Hello ", "```python\n", "print(1)\n", "```", " bye", reason=None)

        result = await seg.consume(coalesce(aiter_list(units)))

        assert summary(nb) == [
            (UnitKind.MARKUP, "Hello ", "assistant"),
            (UnitKind.CODE, "print(1)\n", "assistant"),
            (UnitKind.MARKUP, " bye", "assistant"),
        ]
        assert nb.units[2].language == "python"
        assert result.last_index == 3

    async def test_marker_inside_fragment_splits_text(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("Here:\n```js\nlet a = 1;\n```\nDone.")))
        assert summary(nb) == [
            (UnitKind.MARKUP, "Here:\n", "assistant"),
            (UnitKind.CODE, "let a = 1;\n", "assistant"),
            (UnitKind.MARKUP, "Done.", "assistant"),
        ]
        assert nb.units[2].language == "js"

    async def test_bare_fence_in_prose_is_text(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("use ``` to fence")))
        assert summary(nb) == [(UnitKind.MARKUP, "use ``` to fence", "assistant")]
        assert seg.state == SegmentState.IN_PROSE

    async def test_code_first_skips_prose_unit(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("```python\n", "x = 1\n", "```\n")))
        assert summary(nb) == [(UnitKind.CODE, "x = 1\n", "assistant")]

    async def test_inserts_below_start_index(self):
        nb = Notebook([DocumentUnit(content="a"), DocumentUnit(content="b")])
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("reply")))
        assert [u.content for u in nb.units] == ["a", "reply", "b"]


class TestTermination:
    async def test_stops_on_tool_call_batch(self):
        nb = prompt_notebook()
        call = ToolCallRequest(0, "c1", "function")
        units = [TextFragment("Looking"), ToolCallDeltaBatch((call,)), TextFragment("ignored")]
        result = await CellSegmenter(nb, 0).consume(aiter_list(units))
        assert result.reason == FinishReason.TOOLS_CALL
        assert result.tool_calls == [call]
        assert summary(nb) == [(UnitKind.MARKUP, "Looking", "assistant")]

    async def test_finish_reason_reported(self):
        nb = prompt_notebook()
        result = await CellSegmenter(nb, 0).consume(
            aiter_list(fragments("x", reason=FinishReason.CONTENT_FILTER))
        )
        assert result.reason == FinishReason.CONTENT_FILTER

    async def test_stream_without_finish_is_length(self):
        nb = prompt_notebook()
        result = await CellSegmenter(nb, 0).consume(aiter_list(fragments("cut", reason=None)))
        assert result.reason == FinishReason.LENGTH

    async def test_cancel_checked_each_unit(self):
        nb = prompt_notebook()
        cancel = CancellationToken()
        seg = CellSegmenter(nb, 0, cancel)

        async def units():
            yield TextFragment("first ")
            cancel.cancel()
            yield TextFragment("second")

        result = await seg.consume(units())
        assert result.reason == FinishReason.CANCELLED
        assert summary(nb) == [(UnitKind.MARKUP, "first ", "assistant")]


class TestEmptyCellCleanup:
    async def test_whitespace_only_last_unit_deleted(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        result = await seg.consume(aiter_list(fragments("```python\n", "x\n", "```", "\n\n")))
        assert summary(nb) == [(UnitKind.CODE, "x\n", "assistant")]
        assert result.last_index == 1

    async def test_unit_with_content_is_kept(self):
        nb = prompt_notebook()
        await CellSegmenter(nb, 0).consume(aiter_list(fragments("  .  ")))
        assert summary(nb) == [(UnitKind.MARKUP, "  .  ", "assistant")]

    async def test_prompt_unit_never_deleted(self):
        nb = Notebook([DocumentUnit(content="   ")])
        await CellSegmenter(nb, 0).consume(aiter_list(fragments(" ")))
        assert len(nb.units) == 1

    async def test_blank_unit_between_blocks_removed(self):
        nb = prompt_notebook()
        await CellSegmenter(nb, 0).consume(
            aiter_list(fragments("```python\n", "a\n", "```\n", "```python\n", "b\n", "```"))
        )
        assert summary(nb) == [
            (UnitKind.CODE, "a\n", "assistant"),
            (UnitKind.CODE, "b\n", "assistant"),
        ]


class TestContinuation:
    async def test_length_then_retry_appends_to_last_unit(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)

        first = await seg.consume(aiter_list(fragments("The answer ", "is", reason=FinishReason.LENGTH)))
        assert first.reason == FinishReason.LENGTH
        count_after_first = nb.unit_count()

        await seg.consume(aiter_list(fragments(" forty-two.")))

        assert nb.unit_count() == count_after_first
        assert summary(nb) == [(UnitKind.MARKUP, "The answer is forty-two.", "assistant")]

    async def test_continuation_inside_code_block(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("```python\n", "def f(", reason=FinishReason.LENGTH)))
        await seg.consume(aiter_list(fragments("):\n", "    pass\n", "```")))
        assert summary(nb) == [(UnitKind.CODE, "def f():\n    pass\n", "assistant")]

    async def test_length_after_fence_resumes_in_code(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("Intro\n", "```python\n", reason=FinishReason.LENGTH)))
        count_after_first = nb.unit_count()
        assert seg.state == SegmentState.IN_CODE

        await seg.consume(aiter_list(fragments("x = 1\n", "```")))

        assert nb.unit_count() == count_after_first
        assert summary(nb) == [
            (UnitKind.MARKUP, "Intro\n", "assistant"),
            (UnitKind.CODE, "x = 1\n", "assistant"),
        ]

    async def test_close_drops_blank_unit_after_final_length(self):
        nb = prompt_notebook()
        seg = CellSegmenter(nb, 0)
        await seg.consume(aiter_list(fragments("Intro\n", "```python\n", reason=FinishReason.LENGTH)))
        await seg.close()
        assert summary(nb) == [(UnitKind.MARKUP, "Intro\n", "assistant")]
        assert seg.index == 1


class TestSplitFences:
    async def test_fence_split_across_fragments(self):
        nb = prompt_notebook()
        await CellSegmenter(nb, 0).consume(
            aiter_list(fragments("Intro:", "\n```", "python", "\n", "x = 1\n", "```", " done"))
        )
        assert summary(nb) == [
            (UnitKind.MARKUP, "Intro:\n", "assistant"),
            (UnitKind.CODE, "x = 1\n", "assistant"),
            (UnitKind.MARKUP, " done", "assistant"),
        ]

    async def test_inline_backticks_not_held(self):
        nb = prompt_notebook()
        progress: list[str] = []
        seg = CellSegmenter(nb, 0, progress=progress.append)
        await seg.consume(aiter_list(fragments("use ``` to fence", " code")))
        assert summary(nb) == [(UnitKind.MARKUP, "use ``` to fence code", "assistant")]
        assert progress == ["use ``` to fence", " code"]

    async def test_trailing_fence_written_at_end(self):
        nb = prompt_notebook()
        await CellSegmenter(nb, 0).consume(aiter_list(fragments("see ```")))
        assert summary(nb) == [(UnitKind.MARKUP, "see ```", "assistant")]
