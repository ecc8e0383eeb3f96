"""Core types for the LLM subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Union

from nbchat.types import FinishReason


@dataclass
class FunctionCall:
    name: str | None = None
    arguments: str = ""


@dataclass
class ToolCallRequest:
    """
    A tool call requested by the model.

    While streaming, instances are partial deltas: ``index`` is the merge key
    and ``function.arguments`` holds one fragment.  After the merge stage
    every field is complete and ``function.arguments`` is valid JSON.
    """

    index: int
    id: str | None = None
    type: str | None = None
    function: FunctionCall = field(default_factory=FunctionCall)

    @property
    def name(self) -> str:
        return self.function.name or ""

    def parsed_arguments(self) -> dict:
        if not self.function.arguments:
            return {}
        return json.loads(self.function.arguments)

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": self.type or "function",
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }


@dataclass
class Message:
    """A single message in the conversation sent to the model."""

    role: str  # "system", "user", "assistant", "tool"
    content: str | None = None
    name: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None

    def with_content(self, content: str | None) -> Message:
        return replace(self, content=content)

    def to_wire(self) -> dict:
        """Serialize to the request shape, omitting unset fields."""
        m: dict[str, Any] = {"role": self.role}
        if self.content is not None or not self.tool_calls:
            m["content"] = self.content
        if self.name:
            m["name"] = self.name
        if self.tool_calls:
            m["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            m["tool_call_id"] = self.tool_call_id
        return m


@dataclass
class CompletionRequest:
    """Everything needed to issue one chat-completion request."""

    model: str
    messages: list[Message]
    tools: list[dict] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    max_tokens: int | None = None
    stream: bool = True

    def to_body(self) -> dict:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
            "stream": self.stream,
        }
        body.update(self.parameters)
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.tools:
            body["tools"] = self.tools
        return body


# ---------------------------------------------------------------------------
# Stream units
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class ToolCallDeltaBatch:
    deltas: tuple[ToolCallRequest, ...]


@dataclass(frozen=True)
class FinishSignal:
    reason: FinishReason


StreamUnit = Union[TextFragment, ToolCallDeltaBatch, FinishSignal]
