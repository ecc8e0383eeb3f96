"""Mock tool implementations for testing."""

import asyncio

from nbchat.tools.base import Tool
from nbchat.types import ToolResult


class EchoTool(Tool):
    def __init__(self):
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(kwargs)
        return ToolResult(success=True, content=kwargs.get("message", ""))


class SlowTool(Tool):
    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps longer than any test timeout."

    @property
    def parameters(self) -> dict:
        return {"properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        await asyncio.sleep(10)
        return ToolResult(success=True, content="done")


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "failing"

    @property
    def description(self) -> str:
        return "Always raises."

    @property
    def parameters(self) -> dict:
        return {"properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("disk on fire")
