"""LLM subsystem -- transport, stream normalization, tool-call merging, token accounting."""

from nbchat.llm.coalescer import coalesce
from nbchat.llm.stream import normalize_stream
from nbchat.llm.token_counter import (
    ModelProfile,
    TokenCounter,
    get_output_limit,
    get_token_limit,
)
from nbchat.llm.tool_call_assembler import ToolCallAssembler, merge_tool_calls
from nbchat.llm.types import (
    CompletionRequest,
    FinishSignal,
    FunctionCall,
    Message,
    StreamUnit,
    TextFragment,
    ToolCallDeltaBatch,
    ToolCallRequest,
)

__all__ = [
    "CompletionRequest",
    "FinishSignal",
    "FunctionCall",
    "Message",
    "ModelProfile",
    "StreamUnit",
    "TextFragment",
    "TokenCounter",
    "ToolCallAssembler",
    "ToolCallDeltaBatch",
    "ToolCallRequest",
    "coalesce",
    "get_output_limit",
    "get_token_limit",
    "merge_tool_calls",
    "normalize_stream",
]
