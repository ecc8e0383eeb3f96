from __future__ import annotations

from abc import ABC, abstractmethod

from nbchat.types import ToolResult


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    """
    A capability the model may call.

    ``parameters`` is a JSON Schema object; its ``properties`` and
    ``required`` entries are what the model sees.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def required_fields(self) -> list[str]:
        return list(self.parameters.get("required", []))

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }
