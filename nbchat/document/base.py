"""Document mutation surface (abstract)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class UnitKind(str, Enum):
    CODE = "code"
    MARKUP = "markup"


@dataclass
class Diagnostic:
    """A problem reported against a unit (linter/type-checker output)."""

    code: str
    message: str
    line: int | None = None


@dataclass
class UnitOutput:
    """One output item of a unit, e.g. ``text/plain`` or ``image/png``."""

    mime: str
    data: str


@dataclass
class DocumentUnit:
    content: str = ""
    kind: UnitKind = UnitKind.MARKUP
    language: str = "markdown"
    role_tag: str | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    outputs: list[UnitOutput] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class Document(ABC):
    """
    Abstract interface for a host document made of ordered units.

    Every mutation is a coroutine and must be awaited before the next one is
    issued; callers never run two mutations concurrently.
    """

    @property
    @abstractmethod
    def uri(self) -> str:
        """Stable identifier of the document."""
        ...

    @abstractmethod
    def unit_count(self) -> int: ...

    @abstractmethod
    async def insert_unit(
        self, after_index: int, kind: UnitKind, language: str = "markdown"
    ) -> int:
        """Insert an empty unit after *after_index* (-1 = at the top); return its index."""
        ...

    @abstractmethod
    async def append_text(self, index: int, text: str) -> None: ...

    @abstractmethod
    async def delete_units(self, start: int, end: int) -> None:
        """Delete units in the half-open range ``[start, end)``."""
        ...

    @abstractmethod
    async def set_role_tag(self, index: int, role: str) -> None: ...

    @abstractmethod
    async def update_unit_metadata(self, index: int, key: str, value: Any) -> None:
        """Set (or with ``None`` remove) one metadata entry of a unit."""
        ...

    @abstractmethod
    async def read_units(self, start: int, end: int) -> list[DocumentUnit]:
        """Return copies of the units in ``[start, end)``."""
        ...

    @property
    @abstractmethod
    def metadata(self) -> dict[str, Any]:
        """Per-document persisted settings (read-only view)."""
        ...

    @abstractmethod
    async def update_metadata(self, key: str, value: Any) -> None: ...
