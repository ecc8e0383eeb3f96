"""Check tool-call arguments against the tool's JSON Schema before execution."""

from __future__ import annotations

import json

import jsonschema

from nbchat.llm.types import ToolCallRequest
from nbchat.tools.base import Tool, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: object) -> str | None:
        """Return a readable error for *arguments*, or ``None`` when valid."""
        try:
            jsonschema.validate(
                instance=arguments,
                schema=normalize_schema(tool.parameters),
            )
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path)
            return f"{location}: {e.message}" if location else e.message
        return None

    @classmethod
    def check_call(cls, tool: Tool, call: ToolCallRequest) -> tuple[dict, str | None]:
        """Parse the merged arguments of *call* and validate them."""
        try:
            arguments = call.parsed_arguments()
        except json.JSONDecodeError as e:
            return {}, f"arguments are not valid JSON: {e}"
        if not isinstance(arguments, dict):
            return {}, "arguments must be a JSON object"
        return arguments, cls.validate(tool, arguments)
