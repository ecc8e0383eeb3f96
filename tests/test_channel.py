"""Tests for the producer/consumer stream channel."""

import asyncio

import pytest

from nbchat.llm.channel import open_channel
from nbchat.llm.types import TextFragment


async def test_delivers_in_order():
    async def units():
        for i in range(5):
            await asyncio.sleep(0)
            yield TextFragment(str(i))

    async with open_channel(units()) as channel:
        received = [u.text async for u in channel]
    assert received == ["0", "1", "2", "3", "4"]


async def test_error_after_produced_units():
    async def units():
        yield TextFragment("a")
        yield TextFragment("b")
        raise ValueError("broken")

    received = []
    with pytest.raises(ValueError, match="broken"):
        async with open_channel(units()) as channel:
            async for unit in channel:
                received.append(unit.text)
    assert received == ["a", "b"]


async def test_early_exit_stops_producer():
    closed = asyncio.Event()

    async def units():
        try:
            while True:
                await asyncio.sleep(0.01)
                yield TextFragment("x")
        finally:
            closed.set()

    async with open_channel(units()) as channel:
        async for _ in channel:
            break
    await asyncio.wait_for(closed.wait(), timeout=1)
