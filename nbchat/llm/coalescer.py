"""
Merge sub-word text fragments into word-sized ones.

Providers stream text a few characters at a time.  A fragment that holds no
whitespace or punctuation is "word-internal" and is held back until the next
fragment arrives, so downstream consumers never see a fence marker split as
``"```"`` + ``"py"`` + ``"thon\\n"``.
"""

from __future__ import annotations

from typing import AsyncIterable, AsyncIterator

from nbchat.llm.types import StreamUnit, TextFragment

# Any of these characters ends a word.
WORD_BREAKS = frozenset("\n -<>(),.'\"")


def is_word_internal(text: str) -> bool:
    return not any(ch in WORD_BREAKS for ch in text)


async def coalesce(units: AsyncIterable[StreamUnit]) -> AsyncIterator[StreamUnit]:
    """Yield *units* with word-internal ``TextFragment``s merged forward."""
    buffer = ""
    async for unit in units:
        if isinstance(unit, TextFragment):
            if is_word_internal(unit.text):
                buffer += unit.text
                continue
            if buffer:
                yield TextFragment(buffer + unit.text)
                buffer = ""
            else:
                yield unit
            continue

        if buffer:
            yield TextFragment(buffer)
            buffer = ""
        yield unit

    if buffer:
        yield TextFragment(buffer)
