"""
Explicit session context.

A long-running completion captures the active document once, at start, so
that a focus change while the model is streaming cannot redirect writes to
another document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from nbchat.config import NbchatConfig, RequestParameters
from nbchat.document.base import Document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Everything one completion operation needs, fixed at its start."""

    document: Document
    config: NbchatConfig
    parameters: RequestParameters

    @classmethod
    def capture(cls, document: Document, config: NbchatConfig) -> SessionContext:
        return cls(
            document=document,
            config=config,
            parameters=RequestParameters.from_metadata(document.metadata),
        )


class Workspace:
    """
    Tracks which document is active.

    The active document only changes through :meth:`set_active_document`,
    which notifies every registered listener.
    """

    def __init__(self, config: NbchatConfig) -> None:
        self.config = config
        self._active: Document | None = None
        self._listeners: list[Callable[[Document | None], None]] = []

    @property
    def active_document(self) -> Document | None:
        return self._active

    def set_active_document(self, document: Document | None) -> None:
        if document is self._active:
            return
        self._active = document
        logger.debug("Active document: %s", document.uri if document else None)
        for listener in list(self._listeners):
            listener(document)

    def on_active_document_changed(
        self, listener: Callable[[Document | None], None]
    ) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def capture(self) -> SessionContext:
        """Snapshot the active document for one operation."""
        if self._active is None:
            raise RuntimeError("No active document")
        return SessionContext.capture(self._active, self.config)
