"""
In-memory notebook, optionally backed by an ``.ipynb`` file.

Markdown cells map to ``UnitKind.MARKUP`` and code cells to
``UnitKind.CODE``.  A cell's chat role is stored as the first entry of its
``metadata.tags`` list, and the tool calls a cell triggered are recorded
under its ``tool_results`` metadata key.  Per-notebook request settings live
under the ``nbchat`` key of the notebook metadata.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from nbchat.document.base import Document, DocumentUnit, UnitKind, UnitOutput

logger = logging.getLogger(__name__)

SETTINGS_KEY = "nbchat"


def _source_text(source: str | list[str]) -> str:
    if isinstance(source, list):
        return "".join(source)
    return source or ""


def _parse_outputs(raw_outputs: list[dict]) -> list[UnitOutput]:
    outputs: list[UnitOutput] = []
    for out in raw_outputs:
        output_type = out.get("output_type")
        if output_type == "stream":
            outputs.append(UnitOutput("text/plain", _source_text(out.get("text", ""))))
        elif output_type in ("execute_result", "display_data"):
            for mime, data in (out.get("data") or {}).items():
                outputs.append(UnitOutput(mime, _source_text(data)))
        elif output_type == "error":
            outputs.append(
                UnitOutput("text/plain", f"{out.get('ename', '')}: {out.get('evalue', '')}")
            )
    return outputs


def _dump_outputs(outputs: list[UnitOutput]) -> list[dict]:
    return [
        {
            "output_type": "display_data",
            "data": {o.mime: o.data},
            "metadata": {},
        }
        for o in outputs
    ]


class Notebook(Document):
    """
    A document held in memory.

    Parameters
    ----------
    units:
        Initial units, in order.
    metadata:
        Notebook-level metadata (``nbformat`` style).
    uri:
        Identifier reported by :attr:`uri`; usually the file path.
    """

    def __init__(
        self,
        units: list[DocumentUnit] | None = None,
        metadata: dict[str, Any] | None = None,
        uri: str = "memory://notebook",
    ) -> None:
        self.units: list[DocumentUnit] = list(units or [])
        self._metadata: dict[str, Any] = metadata or {}
        self._uri = uri

    # ------------------------------------------------------------------
    # Document interface
    # ------------------------------------------------------------------

    @property
    def uri(self) -> str:
        return self._uri

    def unit_count(self) -> int:
        return len(self.units)

    async def insert_unit(
        self, after_index: int, kind: UnitKind, language: str = "markdown"
    ) -> int:
        index = after_index + 1
        if kind == UnitKind.MARKUP:
            language = "markdown"
        self.units.insert(index, DocumentUnit(kind=kind, language=language))
        return index

    async def append_text(self, index: int, text: str) -> None:
        unit = self.units[index]
        if not unit.content:
            # An empty unit never starts with line breaks or blank space.
            if not text.strip():
                return
            if text.startswith("\n"):
                text = text[1:]
        unit.content += text

    async def delete_units(self, start: int, end: int) -> None:
        del self.units[start:end]

    async def set_role_tag(self, index: int, role: str) -> None:
        self.units[index].role_tag = role

    async def update_unit_metadata(self, index: int, key: str, value: Any) -> None:
        unit_metadata = self.units[index].metadata
        if value is None:
            unit_metadata.pop(key, None)
        else:
            unit_metadata[key] = value

    async def read_units(self, start: int, end: int) -> list[DocumentUnit]:
        return [copy.deepcopy(u) for u in self.units[start:end]]

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata.get(SETTINGS_KEY) or {})

    async def update_metadata(self, key: str, value: Any) -> None:
        settings = self._metadata.setdefault(SETTINGS_KEY, {})
        if value is None:
            settings.pop(key, None)
        else:
            settings[key] = value

    # ------------------------------------------------------------------
    # .ipynb persistence
    # ------------------------------------------------------------------

    @property
    def kernel_language(self) -> str:
        lang = (self._metadata.get("language_info") or {}).get("name")
        if not lang:
            lang = (self._metadata.get("kernelspec") or {}).get("language")
        return lang or "python"

    @classmethod
    def from_ipynb(cls, data: dict, uri: str = "memory://notebook") -> Notebook:
        nb = cls(metadata=data.get("metadata") or {}, uri=uri)
        for cell in data.get("cells", []):
            kind = UnitKind.CODE if cell.get("cell_type") == "code" else UnitKind.MARKUP
            cell_metadata = dict(cell.get("metadata") or {})
            tags = cell_metadata.pop("tags", None) or []
            nb.units.append(
                DocumentUnit(
                    content=_source_text(cell.get("source", "")),
                    kind=kind,
                    language=nb.kernel_language if kind == UnitKind.CODE else "markdown",
                    role_tag=tags[0] if tags else None,
                    outputs=_parse_outputs(cell.get("outputs") or []),
                    metadata=cell_metadata,
                )
            )
        return nb

    def to_ipynb(self) -> dict:
        cells = []
        for unit in self.units:
            cell_metadata = dict(unit.metadata)
            if unit.role_tag:
                cell_metadata["tags"] = [unit.role_tag]
            cell: dict[str, Any] = {
                "cell_type": "code" if unit.kind == UnitKind.CODE else "markdown",
                "metadata": cell_metadata,
                "source": unit.content,
            }
            if unit.kind == UnitKind.CODE:
                cell["execution_count"] = None
                cell["outputs"] = _dump_outputs(unit.outputs)
            cells.append(cell)
        return {
            "cells": cells,
            "metadata": self._metadata,
            "nbformat": 4,
            "nbformat_minor": 5,
        }

    @classmethod
    def load(cls, path: str | Path) -> Notebook:
        p = Path(path).expanduser()
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        logger.info("Loaded notebook %s (%d cells)", p, len(data.get("cells", [])))
        return cls.from_ipynb(data, uri=str(p))

    def save(self, path: str | Path | None = None) -> Path:
        p = Path(path or self._uri).expanduser()
        with p.open("w", encoding="utf-8") as f:
            json.dump(self.to_ipynb(), f, indent=1, ensure_ascii=False)
            f.write("\n")
        return p
