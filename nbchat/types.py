"""Shared value types used across the nbchat subsystems."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FinishReason(str, Enum):
    """Why a single model turn stopped producing output."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOLS_CALL = "tools_call"
    CANCELLED = "cancelled"


class CompletionType(str, Enum):
    """Which document units are sent along with a request."""

    CURRENT_CELL = "current_cell"
    CURRENT_AND_ABOVE = "current_and_above"


class Role:
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolResult:
    success: bool
    content: str
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Executed:
    """The operator allowed the tool call and it ran, producing *text*."""

    text: str


@dataclass(frozen=True)
class Declined:
    """The operator refused to run the tool call."""


ToolOutcome = Executed | Declined


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
    CANCELLED = "cancelled"
    CONNECTION_RESET = "connection_reset"
    BUDGET_EXCEEDED = "budget_exceeded"
    INSUFFICIENT_REDUCTION = "insufficient_reduction"
    UNPARSEABLE_TOOL_ARGUMENTS = "unparseable_tool_arguments"
    UNHANDLED_FINISH_REASON = "unhandled_finish_reason"
    PROVIDER_HTTP_ERROR = "provider_http_error"
    UNKNOWN_MODEL_TOKENIZER = "unknown_model_tokenizer"
    MODEL_NOT_SET = "model_not_set"
    CREDENTIAL_MISSING = "credential_missing"
