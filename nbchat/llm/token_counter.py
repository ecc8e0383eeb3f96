"""
Token accounting for chat-completion requests.

The counting rules mirror the provider's own accounting closely enough to
pre-flight a request: 4 tokens per message, the encoded length of every
field value (non-strings serialized as compact JSON), one extra token when a
``name`` field is present, the encoded tool schemas, and 3 trailing tokens.
It is an estimate; the provider may still reject a request that passes.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import tiktoken

from nbchat.errors import UnknownModelTokenizer
from nbchat.llm.types import Message

logger = logging.getLogger(__name__)

TOKENS_PER_MESSAGE = 4
TOKENS_PER_NAME = 1
TOKENS_REPLY_PRIMING = 3

# Context-window sizes of known models.
MODEL_TOKEN_LIMITS: dict[str, int] = {
    "gpt-3.5-turbo": 4096,
    "gpt-3.5-turbo-0613": 4096,
    "gpt-3.5-turbo-instruct": 4096,
    "gpt-3.5-turbo-16k": 16385,
    "gpt-3.5-turbo-16k-0613": 16385,
    "gpt-3.5-turbo-1106": 16385,
    "gpt-3.5-turbo-0125": 16385,
    "gpt-4": 8192,
    "gpt-4-0613": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-32k-0613": 32768,
    "gpt-4-1106-preview": 128_000,
    "gpt-4-0125-preview": 128_000,
    "gpt-4-turbo-preview": 128_000,
    "gpt-4-vision-preview": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
}

# Completion-token ceilings of models whose reply is capped below their window.
MODEL_OUTPUT_LIMITS: dict[str, int] = {
    "gpt-3.5-turbo-1106": 4096,
    "gpt-3.5-turbo-0125": 4096,
    "gpt-4-1106-preview": 4096,
    "gpt-4-0125-preview": 4096,
    "gpt-4-turbo-preview": 4096,
    "gpt-4-vision-preview": 4096,
    "gpt-4-turbo": 4096,
    "gpt-4o": 16384,
    "gpt-4o-mini": 16384,
}

# Snapshot identifiers the tokenizer may not know, mapped to their base model.
_TOKENIZER_ALTERNATIVES: dict[str, str] = {
    "gpt-3.5-turbo-16k-0613": "gpt-3.5-turbo",
    "gpt-3.5-turbo-0613": "gpt-3.5-turbo",
    "gpt-3.5-turbo-16k": "gpt-3.5-turbo",
    "gpt-4-0613": "gpt-4",
    "gpt-4-32k-0613": "gpt-4",
}

_DATED_SNAPSHOT = re.compile(r"^(?P<base>.+?)-(?:\d{4}-\d{2}-\d{2}|\d{4})$")


@dataclass(frozen=True)
class ModelProfile:
    """
    A model name, its context window and its reply ceiling.

    ``None`` means unknown: no budget for the window, no extra cap for the
    reply.
    """

    name: str
    context_window_tokens: int | None
    max_output_tokens: int | None = None


class Encoding(Protocol):
    def encode(self, text: str) -> list[int]: ...


def get_token_limit(
    model: str, overrides: Mapping[str, int] | None = None
) -> int | None:
    """Return the context window for *model*, or ``None`` when unknown."""
    if overrides and model in overrides:
        return overrides[model]
    return MODEL_TOKEN_LIMITS.get(model)


def get_output_limit(
    model: str, overrides: Mapping[str, int] | None = None
) -> int | None:
    """Return the most completion tokens *model* accepts, or ``None`` when unknown."""
    if overrides and model in overrides:
        return overrides[model]
    return MODEL_OUTPUT_LIMITS.get(get_valid_alternative_if_available(model))


def get_model_profile(
    model: str,
    overrides: Mapping[str, int] | None = None,
    output_overrides: Mapping[str, int] | None = None,
) -> ModelProfile:
    return ModelProfile(
        model,
        get_token_limit(model, overrides),
        get_output_limit(model, output_overrides),
    )


def get_valid_alternative_if_available(model: str) -> str:
    """
    Map *model* to an identifier the tokenizer knows.

    Only used to pick an encoding; the request payload keeps the original
    model name.
    """
    if model in _TOKENIZER_ALTERNATIVES:
        return _TOKENIZER_ALTERNATIVES[model]
    match = _DATED_SNAPSHOT.match(model)
    if match and match.group("base") in MODEL_TOKEN_LIMITS:
        return match.group("base")
    return model


def _field_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class TokenCounter:
    """
    Count tokens for a message list against one model's tokenizer.

    Parameters
    ----------
    model:
        Model identifier.  Resolved through
        :func:`get_valid_alternative_if_available` before asking tiktoken.
    encoding:
        Pre-built encoding.  When omitted it is loaded lazily from tiktoken
        and ``UnknownModelTokenizer`` is raised if the model is not known.
    """

    def __init__(self, model: str, encoding: Encoding | None = None) -> None:
        self.model = model
        self._encoding = encoding

    @property
    def encoding(self) -> Encoding:
        if self._encoding is None:
            tokenizer_model = get_valid_alternative_if_available(self.model)
            try:
                self._encoding = tiktoken.encoding_for_model(tokenizer_model)
            except KeyError as exc:
                raise UnknownModelTokenizer(self.model) from exc
        return self._encoding

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the token count for a plain string."""
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def count_messages(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> int:
        """
        Return the token count for a full request.

        *tools* is the list of function-calling schemas sent with the
        request; the model "sees" them in the prompt.
        """
        total = 0
        for msg in messages:
            total += TOKENS_PER_MESSAGE
            for key, value in msg.to_wire().items():
                if value is None:
                    continue
                total += self.count_text(_field_text(value))
                if key == "name":
                    total += TOKENS_PER_NAME

        for tool in tools or []:
            total += self.count_text(_field_text(tool))

        total += TOKENS_REPLY_PRIMING
        return total
