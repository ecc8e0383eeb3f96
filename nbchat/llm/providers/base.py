"""Abstract base class for the chat-completion transport."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from nbchat.cancellation import CancellationToken
from nbchat.llm.types import CompletionRequest


class Provider(ABC):
    """
    A provider encapsulates access to a single chat-completion endpoint.

    Implementations must support:
      - Streaming completions (``stream``), yielding raw event payloads.
      - Non-streaming completions (``complete``), returning the reply text.
    """

    @abstractmethod
    async def stream(
        self,
        request: CompletionRequest,
        cancel: CancellationToken,
    ) -> AsyncIterator[dict]:
        """
        Start a streaming completion.

        Yields the decoded JSON payload of each server-sent event.  Setting
        *cancel* aborts the underlying HTTP request.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        # This line is unreachable but satisfies the type checker.
        if False:  # pragma: no cover
            yield {}  # type: ignore[misc]

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> str:
        """Run a non-streaming completion and return the first choice's text."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"openai-compat"``)."""
        ...
