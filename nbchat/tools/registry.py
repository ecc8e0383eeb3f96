from __future__ import annotations

import logging
from importlib.metadata import entry_points
from pathlib import Path

from nbchat.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, disabled: list[str] | None = None):
        self._tools: dict[str, Tool] = {}
        self._disabled = set(disabled or [])

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        if name in self._disabled:
            return None
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise KeyError(name)
        return t

    def list(self) -> list[Tool]:
        tools = [t for t in self._tools.values() if t.name not in self._disabled]
        return sorted(tools, key=lambda t: t.name)

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "nbchat.tools",
        allow_tools: set[str] | None = None,
    ) -> int:
        """Load tool classes from entry points and register an instance of each."""
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            if allow_tools and ep.name not in allow_tools:
                continue
            tool_cls = ep.load()
            self.register(tool_cls())
            logger.info("Loaded tool plugin %s", ep.name)
            loaded += 1
        return loaded


def default_registry(
    workspace_root: str | Path = ".",
    *,
    disabled: list[str] | None = None,
    plugins_enabled: bool = False,
) -> ToolRegistry:
    """Registry with the built-in file tools, plus plugins if enabled."""
    from nbchat.tools.files import FindFilesTool, ReadFileTool

    registry = ToolRegistry(disabled=disabled)
    registry.register(FindFilesTool(workspace_root))
    registry.register(ReadFileTool(workspace_root))
    registry.load_plugins(enabled=plugins_enabled)
    return registry
