"""
Workspace file tools: find files by glob, read a file's text.

Both tools resolve paths against a workspace root and refuse to leave it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from nbchat.tools.base import Tool
from nbchat.types import ToolResult

logger = logging.getLogger(__name__)

# Directories never listed by find_files.
EXCLUDED_DIRS = frozenset({".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", ".ipynb_checkpoints"})

MAX_RESULTS = 500
MAX_READ_BYTES = 1_000_000


class _WorkspaceTool(Tool):
    def __init__(self, workspace_root: str | Path = ".") -> None:
        self.root = Path(workspace_root).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.root / p
        p = p.resolve()
        if p != self.root and self.root not in p.parents:
            raise PermissionError(f"{path} is outside the workspace")
        return p


class FindFilesTool(_WorkspaceTool):
    @property
    def name(self) -> str:
        return "find_files"

    @property
    def description(self) -> str:
        return "Find files across the workspace by glob pattern (case-sensitive)."

    @property
    def parameters(self) -> dict:
        return {
            "properties": {
                "include": {
                    "type": "string",
                    "description": (
                        "A glob pattern that defines the files to search for, "
                        "which is case-sensitive and must always search across "
                        "multiple directory levels, e.g. **/*.py."
                    ),
                },
            },
            "required": ["include"],
        }

    def _find(self, pattern: str) -> list[str]:
        matches: list[str] = []
        for p in sorted(self.root.glob(pattern)):
            rel = p.relative_to(self.root)
            if any(part in EXCLUDED_DIRS for part in rel.parts):
                continue
            if p.is_file():
                matches.append(str(p))
            if len(matches) >= MAX_RESULTS:
                break
        return matches

    async def execute(self, **kwargs) -> ToolResult:
        pattern = kwargs.get("include") or "**/*.*"
        matches = await asyncio.to_thread(self._find, pattern)
        logger.info("find_files %r: %d matches", pattern, len(matches))
        if not matches:
            return ToolResult(
                success=True,
                content=f"No results with find_files for your include parameter '{pattern}'",
            )
        return ToolResult(
            success=True,
            content="\n".join(matches),
            metadata={"count": len(matches)},
        )


class ReadFileTool(_WorkspaceTool):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the content of a file in the workspace and return it as a string."

    @property
    def parameters(self) -> dict:
        return {
            "properties": {
                "absolute_file_path": {
                    "type": "string",
                    "description": "The absolute path to the file to read the content from.",
                },
            },
            "required": ["absolute_file_path"],
        }

    def _read(self, path: Path) -> str:
        with path.open("rb") as f:
            data = f.read(MAX_READ_BYTES + 1)
        text = data[:MAX_READ_BYTES].decode("utf-8", errors="replace")
        if len(data) > MAX_READ_BYTES:
            text += "\n[truncated]"
        return text

    async def execute(self, **kwargs) -> ToolResult:
        path = self._resolve(kwargs["absolute_file_path"])
        if not path.is_file():
            return ToolResult(
                success=False,
                content=f"File not found: {path}",
                error=f"File not found: {path}",
            )
        text = await asyncio.to_thread(self._read, path)
        logger.info("read_file %s (%d chars)", path, len(text))
        return ToolResult(success=True, content=text, metadata={"path": str(path)})
