"""Tests for nbchat.assembler."""

from __future__ import annotations

import pytest

from nbchat.assembler import (
    build_messages,
    ensure_system_message,
    tool_result_messages,
    unit_to_messages,
)
from nbchat.document.base import Diagnostic, DocumentUnit, UnitKind, UnitOutput
from nbchat.document.notebook import Notebook
from nbchat.llm.types import FunctionCall, Message, ToolCallRequest
from nbchat.prompts.system import (
    DECLINED_TOOL_CALL,
    DEFAULT_SYSTEM_MESSAGE,
    is_wrapped,
)
from nbchat.types import CompletionType, Declined, Executed


def notebook():
    return Notebook([
        DocumentUnit(content="You are terse.", role_tag="system"),
        DocumentUnit(content="Why does this fail?"),
        DocumentUnit(
            content="1/0",
            kind=UnitKind.CODE,
            language="python",
            diagnostics=[Diagnostic("E0", "division by zero"), Diagnostic("W1", "magic number")],
            outputs=[
                UnitOutput("text/plain", "ZeroDivisionError"),
                UnitOutput("image/png", "iVBORw0..."),
                UnitOutput("text/html", "<b>err</b>"),
            ],
        ),
        DocumentUnit(content="Because you divide by zero.", role_tag="assistant"),
    ])


class TestUnitMessages:
    def test_untagged_unit_is_user(self):
        msgs = unit_to_messages(DocumentUnit(content="hi"))
        assert msgs == [Message(role="user", content="hi", name="markup")]

    def test_unknown_tag_falls_back_to_user(self):
        msgs = unit_to_messages(DocumentUnit(content="hi", role_tag="narrator"))
        assert msgs[0].role == "user"

    def test_code_unit_framing(self):
        unit = notebook().units[2]
        msgs = unit_to_messages(unit)
        code, problems, out1, out2 = msgs
        assert code.name == "code"
        assert code.content == "<CodeCell>```python\n1/0\n```</CodeCell>"
        assert is_wrapped(problems.content, "CodeCellProblems")
        assert "E0: division by zero\nW1: magic number" in problems.content
        assert is_wrapped(out1.content, "CodeCellOutput")
        assert "ZeroDivisionError" in out1.content
        assert "<b>err</b>" in out2.content
        assert all(m.role == "user" for m in msgs)

    def test_supplementary_messages_use_unit_role(self):
        unit = DocumentUnit(
            content="x", kind=UnitKind.CODE, language="python", role_tag="assistant",
            outputs=[UnitOutput("text/plain", "1")],
        )
        assert [m.role for m in unit_to_messages(unit)] == ["assistant", "assistant"]


class TestBuildMessages:
    async def test_current_and_above(self):
        msgs = await build_messages(notebook(), 3, CompletionType.CURRENT_AND_ABOVE)
        assert msgs[0] == Message(role="system", content="You are terse.", name="markup")
        assert msgs[-1].content == "Because you divide by zero."
        assert sum(m.role == "system" for m in msgs) == 1

    async def test_current_cell_only(self):
        msgs = await build_messages(notebook(), 1, CompletionType.CURRENT_CELL)
        assert msgs == [
            Message(role="user", content="Why does this fail?", name="markup"),
            Message(role="system", content=DEFAULT_SYSTEM_MESSAGE),
        ]

    async def test_through_extends_range(self):
        msgs = await build_messages(notebook(), 1, CompletionType.CURRENT_CELL, through=3)
        assert msgs[0].content == "Why does this fail?"
        assert msgs[-1].content == DEFAULT_SYSTEM_MESSAGE
        assert any(m.content == "Because you divide by zero." for m in msgs)

    async def test_follow_ups_placed_after_their_unit(self):
        follow_ups = {
            0: [Message(role="tool", content="out of range")],
            1: [Message(role="tool", content="a")],
            3: [Message(role="tool", content="b")],
        }
        msgs = await build_messages(
            notebook(), 1, CompletionType.CURRENT_CELL, through=3, follow_ups=follow_ups
        )
        assert [m.content for m in msgs[:2]] == ["Why does this fail?", "a"]
        assert [m.content for m in msgs[-3:]] == [
            "Because you divide by zero.", "b", DEFAULT_SYSTEM_MESSAGE,
        ]
        assert all(m.content != "out of range" for m in msgs)


class TestSystemInjection:
    def test_appended_at_end_when_missing(self):
        msgs = ensure_system_message([Message(role="user", content="q")])
        assert msgs[-1] == Message(role="system", content=DEFAULT_SYSTEM_MESSAGE)

    def test_idempotent(self):
        once = ensure_system_message([Message(role="user", content="q")])
        twice = ensure_system_message(once)
        assert twice == once

    def test_existing_system_anywhere_prevents_injection(self):
        msgs = [
            Message(role="user", content="q"),
            Message(role="system", content="custom"),
            Message(role="assistant", content="a"),
        ]
        assert ensure_system_message(msgs) == msgs


class TestToolResults:
    CALL = ToolCallRequest(0, "call_1", "function", FunctionCall("find_files", '{"include": "*.py"}'))

    def test_executed(self):
        assistant, tool = tool_result_messages(self.CALL, Executed("a.py"))
        assert assistant.role == "assistant"
        assert assistant.name == "find_files"
        assert assistant.tool_calls[0].id == "call_1"
        assert "content" not in assistant.to_wire()
        assert tool == Message(role="tool", content="a.py", tool_call_id="call_1")

    def test_executed_empty_output_is_not_declined(self):
        _, tool = tool_result_messages(self.CALL, Executed(""))
        assert tool.content == ""

    def test_declined(self):
        _, tool = tool_result_messages(self.CALL, Declined())
        assert tool.content == DECLINED_TOOL_CALL

    def test_unknown_outcome_rejected(self):
        with pytest.raises(TypeError):
            tool_result_messages(self.CALL, "ok")
