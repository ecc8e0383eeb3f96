"""
Repair fallback for tool-call arguments that are not valid JSON.

A small non-streaming completion is issued with a one-shot example that
shows the model how to turn loose text into a JSON document.  The reply is
parsed with :func:`json.loads`; a failure there propagates to the caller.
"""

from __future__ import annotations

import json
import logging

from nbchat.llm.providers.base import Provider
from nbchat.llm.types import CompletionRequest, Message
from nbchat.prompts.system import REPAIR_EXAMPLES, REPAIR_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class JsonRepairer:
    """
    Callable that asks *provider* to rewrite *text* as JSON.

    Parameters
    ----------
    provider:
        Transport used for the auxiliary request.
    model:
        Model identifier for the auxiliary request (not the streaming one).
    """

    def __init__(self, provider: Provider, model: str = "gpt-4") -> None:
        self.provider = provider
        self.model = model

    def build_request(self, text: str) -> CompletionRequest:
        messages = [Message(role="system", content=REPAIR_SYSTEM_PROMPT)]
        for user_text, assistant_text in REPAIR_EXAMPLES:
            messages.append(Message(role="user", content=user_text))
            messages.append(Message(role="assistant", content=assistant_text))
        messages.append(Message(role="user", content=text))
        return CompletionRequest(
            model=self.model,
            messages=messages,
            parameters={"temperature": 0},
            stream=False,
        )

    async def __call__(self, text: str) -> object:
        logger.warning("Asking %s to repair tool-call arguments", self.model)
        reply = await self.provider.complete(self.build_request(text))
        return json.loads(reply)
