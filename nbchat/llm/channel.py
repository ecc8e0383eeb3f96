"""
Single-producer / single-consumer hand-off for stream units.

The provider pipeline (transport -> normalizer -> coalescer -> tool-call
merge) runs in its own task and pushes every unit into an unbounded queue.
The consumer reads from the queue; its only suspension point is the queue
receive.  Errors raised by the producer are re-raised on the consumer side
in order, after every unit produced before the failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

from nbchat.llm.types import StreamUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Failed:
    error: BaseException


_END = object()


async def _produce(units: AsyncIterable[StreamUnit], queue: asyncio.Queue) -> None:
    try:
        async with contextlib.aclosing(units):
            async for unit in units:
                queue.put_nowait(unit)
    except Exception as exc:
        queue.put_nowait(_Failed(exc))
    finally:
        queue.put_nowait(_END)


async def _consume(queue: asyncio.Queue) -> AsyncIterator[StreamUnit]:
    while True:
        item = await queue.get()
        if item is _END:
            return
        if isinstance(item, _Failed):
            raise item.error
        yield item


@contextlib.asynccontextmanager
async def open_channel(
    units: AsyncIterable[StreamUnit],
) -> AsyncIterator[AsyncIterator[StreamUnit]]:
    """
    Start a producer task for *units* and yield the consuming iterator.

    Leaving the context stops the producer if it is still running, which
    closes the upstream generators and with them the HTTP response.
    """
    queue: asyncio.Queue = asyncio.Queue()
    task = asyncio.create_task(_produce(units, queue))
    consumer = _consume(queue)
    try:
        yield consumer
    finally:
        await consumer.aclose()
        if not task.done():
            logger.debug("Stopping stream producer before end of stream")
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
