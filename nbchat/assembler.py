"""
Conversation assembler.

Builds the message list for a request from the document units in range:
one message per unit (role from its tag, code wrapped in a fenced block),
one per unit's problems, one per non-image output, and finally a default
system message if the document has none.
"""

from __future__ import annotations

import logging
from typing import Mapping

from nbchat.document.base import Document, DocumentUnit, UnitKind
from nbchat.llm.types import FunctionCall, Message, ToolCallRequest
from nbchat.prompts.system import (
    CODE_CELL_OUTPUT,
    CODE_CELL_PROBLEMS,
    DECLINED_TOOL_CALL,
    DEFAULT_SYSTEM_MESSAGE,
    wrap,
    wrap_code,
)
from nbchat.types import CompletionType, Declined, Executed, Role, ToolOutcome

logger = logging.getLogger(__name__)

_UNIT_ROLES = (Role.SYSTEM, Role.USER, Role.ASSISTANT)


def unit_role(unit: DocumentUnit) -> str:
    if unit.role_tag in _UNIT_ROLES:
        return unit.role_tag
    if unit.role_tag:
        logger.warning("Ignoring unknown role tag %r", unit.role_tag)
    return Role.USER


def unit_to_messages(unit: DocumentUnit) -> list[Message]:
    role = unit_role(unit)
    content = unit.content
    if unit.kind == UnitKind.CODE:
        content = wrap_code(content, unit.language)

    messages = [Message(role=role, content=content, name=unit.kind.value)]

    if unit.diagnostics:
        problems = "\n".join(f"{d.code}: {d.message}" for d in unit.diagnostics)
        messages.append(Message(role=role, content=wrap(CODE_CELL_PROBLEMS, problems)))

    for output in unit.outputs:
        if output.mime.startswith("image"):
            continue
        messages.append(Message(role=role, content=wrap(CODE_CELL_OUTPUT, output.data)))

    return messages


def ensure_system_message(messages: list[Message]) -> list[Message]:
    """Append the default system message unless any message is a system one."""
    if any(m.role == Role.SYSTEM for m in messages):
        return list(messages)
    return [*messages, Message(role=Role.SYSTEM, content=DEFAULT_SYSTEM_MESSAGE)]


async def build_messages(
    document: Document,
    index: int,
    completion_type: CompletionType,
    *,
    through: int | None = None,
    follow_ups: Mapping[int, list[Message]] | None = None,
) -> list[Message]:
    """
    Assemble the request messages for the unit at *index*.

    ``CURRENT_AND_ABOVE`` sends units ``0..index``; ``CURRENT_CELL`` sends
    only the unit itself.  *through* extends the range down to a later unit,
    which is how units written by the model during this operation are sent
    back after a tool call or a truncated reply.  *follow_ups* maps a unit
    index to messages placed right after that unit, which keeps tool-call
    rounds where they happened in the conversation.
    """
    start = 0 if completion_type == CompletionType.CURRENT_AND_ABOVE else index
    end = max(index, through if through is not None else index) + 1
    units = await document.read_units(start, end)
    follow_ups = follow_ups or {}
    messages: list[Message] = []
    for position, unit in enumerate(units, start):
        messages.extend(unit_to_messages(unit))
        messages.extend(follow_ups.get(position, ()))
    return ensure_system_message(messages)


def tool_result_messages(
    call: ToolCallRequest, outcome: ToolOutcome
) -> list[Message]:
    """
    Frame one finished tool call for the next request.

    Produces the assistant message that requested the call followed by the
    ``tool`` message carrying its result.
    """
    if isinstance(outcome, Executed):
        result = outcome.text
    elif isinstance(outcome, Declined):
        result = DECLINED_TOOL_CALL
    else:
        raise TypeError(f"Unexpected tool outcome: {outcome!r}")

    request = ToolCallRequest(
        index=call.index,
        id=call.id,
        type=call.type or "function",
        function=FunctionCall(call.function.name, call.function.arguments),
    )
    return [
        Message(role=Role.ASSISTANT, name=call.name, tool_calls=[request]),
        Message(role=Role.TOOL, content=result, tool_call_id=call.id),
    ]
