"""Operator interaction surface used by the completion core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nbchat.llm.types import ToolCallRequest
    from nbchat.reduction import TokenReductionStrategy


class OperatorInterface(ABC):
    """
    Prompts, pickers and notifications.

    Pickers return an empty list (or ``None``) when the operator dismisses
    them; the core treats that as a cancellation.
    """

    @abstractmethod
    async def select_strategies(
        self, strategies: list[TokenReductionStrategy], overflow: int
    ) -> list[TokenReductionStrategy]:
        """Multi-select reduction strategies; nothing is pre-selected."""
        ...

    @abstractmethod
    async def select_tool_calls(
        self, calls: list[ToolCallRequest]
    ) -> list[ToolCallRequest]:
        """Multi-select the tool calls allowed to run; all are pre-selected."""
        ...

    @abstractmethod
    async def select_model(self, models: list[str]) -> str | None: ...

    @abstractmethod
    async def confirm(self, message: str) -> bool: ...

    @abstractmethod
    async def prompt_secret(self, message: str) -> str | None: ...

    def report_progress(self, message: str) -> None:
        """Show transient progress; silent by default."""

    @abstractmethod
    def info(self, message: str) -> None: ...

    @abstractmethod
    def warn(self, message: str) -> None: ...

    @abstractmethod
    def error(self, title: str, detail: str = "") -> None: ...
