"""
Overflow mitigation.

When a request does not fit the model's context window the operator is
offered a fixed, ordered list of reduction strategies, each annotated with
the tokens it would save.  Strategies are pure functions over the message
list, so every estimate is computed on a scratch copy before anything is
committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from nbchat.errors import InsufficientReduction
from nbchat.llm.token_counter import TokenCounter
from nbchat.llm.types import Message
from nbchat.prompts.system import (
    CODE_CELL,
    CODE_CELL_OUTPUT,
    CODE_CELL_PROBLEMS,
    is_wrapped,
)
from nbchat.types import Role
from nbchat.ui import OperatorInterface

logger = logging.getLogger(__name__)

Transform = Callable[[list[Message]], list[Message]]


@dataclass
class TokenReductionStrategy:
    """
    One way to shrink a request.

    ``estimated_savings`` is filled in by :meth:`estimate` and kept for the
    rest of the mitigation run.
    """

    label: str
    transform: Transform
    estimated_savings: int | None = field(default=None, compare=False)

    @property
    def description(self) -> str:
        if self.estimated_savings is None:
            return ""
        return f"{self.estimated_savings} tokens"

    def estimate(
        self,
        messages: list[Message],
        counter: TokenCounter,
        tools: list[dict] | None = None,
        baseline: int | None = None,
    ) -> int:
        if self.estimated_savings is None:
            if baseline is None:
                baseline = counter.count_messages(messages, tools)
            reduced = self.transform(list(messages))
            self.estimated_savings = baseline - counter.count_messages(reduced, tools)
        return self.estimated_savings


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

def _drop_tagged(tag: str) -> Transform:
    def transform(messages: list[Message]) -> list[Message]:
        return [m for m in messages if not is_wrapped(m.content, tag)]
    return transform


def drop_system_messages(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.role != Role.SYSTEM]


def spaces_to_tabs(messages: list[Message]) -> list[Message]:
    return [
        m.with_content(m.content.replace("    ", "\t")) if m.content else m
        for m in messages
    ]


def default_strategies() -> list[TokenReductionStrategy]:
    """Return fresh strategy instances, in the order they are applied."""
    return [
        TokenReductionStrategy(
            "Remove all notebook cell outputs", _drop_tagged(CODE_CELL_OUTPUT)
        ),
        TokenReductionStrategy(
            "Remove all notebook cell problems", _drop_tagged(CODE_CELL_PROBLEMS)
        ),
        TokenReductionStrategy("Remove all code cells", _drop_tagged(CODE_CELL)),
        TokenReductionStrategy("Remove the system message", drop_system_messages),
        TokenReductionStrategy("Replace 4 spaces with 1 tab", spaces_to_tabs),
    ]


def apply_strategies(
    messages: list[Message], selected: list[TokenReductionStrategy]
) -> list[Message]:
    """Apply *selected* in list order; each sees the previous result."""
    reduced = list(messages)
    for strategy in selected:
        reduced = strategy.transform(reduced)
    return reduced


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class OverflowMitigator:
    """
    Offers reduction strategies to the operator and validates the result.

    Parameters
    ----------
    counter:
        Token counter for the request's model.
    ui:
        Operator surface used for the strategy picker and warnings.
    hide_unhelpful:
        Leave strategies that save nothing out of the picker.
    """

    def __init__(
        self,
        counter: TokenCounter,
        ui: OperatorInterface,
        hide_unhelpful: bool = False,
    ) -> None:
        self.counter = counter
        self.ui = ui
        self.hide_unhelpful = hide_unhelpful

    def estimate(
        self, messages: list[Message], tools: list[dict] | None = None
    ) -> list[TokenReductionStrategy]:
        """Return the default strategies with their savings computed."""
        baseline = self.counter.count_messages(messages, tools)
        strategies = default_strategies()
        for strategy in strategies:
            strategy.estimate(messages, self.counter, tools, baseline)
        return strategies

    async def mitigate(
        self,
        messages: list[Message],
        overflow: int,
        limit: int,
        tools: list[dict] | None = None,
    ) -> list[Message] | None:
        """
        Let the operator pick strategies until the request fits.

        Returns the reduced message list, or ``None`` if the operator picked
        nothing.  Raises ``InsufficientReduction`` when the picked strategies
        still leave the request over *limit*.
        """
        strategies = self.estimate(messages, tools)
        total_savings = sum(s.estimated_savings or 0 for s in strategies)
        if total_savings < overflow:
            self.ui.warn(
                f"Even with every strategy applied the request would still be "
                f"{overflow - total_savings} tokens over the limit."
            )

        offered = strategies
        if self.hide_unhelpful:
            offered = [s for s in strategies if (s.estimated_savings or 0) > 0]

        selected = await self.ui.select_strategies(offered, overflow)
        if not selected:
            logger.info("No reduction strategy selected")
            return None

        chosen = [s for s in strategies if any(s is picked for picked in selected)]
        logger.info("Applying reductions: %s", ", ".join(s.label for s in chosen))
        reduced = apply_strategies(messages, chosen)

        count = self.counter.count_messages(reduced, tools)
        if count > limit:
            raise InsufficientReduction(count, limit)
        return reduced
