"""Cooperative cancellation shared by the stream consumer and the transport."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    A one-shot cancellation flag.

    Observers poll :attr:`is_cancelled` at their loop boundaries.  Callbacks
    registered with :meth:`on_cancel` fire synchronously inside
    :meth:`cancel`, which is how the transport aborts an in-flight request at
    the same moment the flag flips.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("Cancellation callback failed")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register *callback*; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unregister
