"""
Orchestrator core -- the loop that turns a document cell into model output.

The orchestrator:
1. Assembles the conversation from the document units in range
2. Pre-flight checks the token budget and offers reductions on overflow
3. Streams the completion through normalizer, coalescer and tool-call merge
4. Writes the stream into new document units via the segmenter
5. Runs approved tool calls and sends their results back, re-entering at
   the last unit written
6. Optionally re-requests after a truncated (``length``) reply
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from nbchat.assembler import build_messages, tool_result_messages
from nbchat.cancellation import CancellationToken
from nbchat.config import CredentialStore, NbchatConfig, RequestParameters
from nbchat.document.base import Document
from nbchat.errors import (
    CompletionError,
    CredentialMissing,
    InsufficientReduction,
    ModelNotSet,
    TransportCancelled,
    UnknownModelTokenizer,
)
from nbchat.llm.channel import open_channel
from nbchat.llm.coalescer import coalesce
from nbchat.llm.json_repair import JsonRepairer
from nbchat.llm.providers.base import Provider
from nbchat.llm.stream import normalize_stream
from nbchat.llm.token_counter import TokenCounter, get_model_profile
from nbchat.llm.tool_call_assembler import JsonRepair, ToolCallAssembler, merge_tool_calls
from nbchat.llm.types import CompletionRequest, Message, ToolCallRequest
from nbchat.reduction import OverflowMitigator
from nbchat.segmentation import CellSegmenter, SegmentationResult
from nbchat.session import SessionContext
from nbchat.tools.registry import ToolRegistry
from nbchat.tools.validation import ToolValidator
from nbchat.types import (
    CompletionType,
    Declined,
    ErrorCode,
    Executed,
    FinishReason,
    ToolOutcome,
    ToolResult,
)
from nbchat.ui import OperatorInterface

logger = logging.getLogger(__name__)


@dataclass
class BudgetDecision:
    """Messages and ``max_tokens`` to send after the pre-flight check."""

    messages: list[Message]
    max_tokens: int | None


async def resolve_api_key(store: CredentialStore, ui: OperatorInterface) -> str:
    """Return the stored API key, asking the operator (and saving) if unset."""
    api_key = store.get()
    if api_key:
        return api_key
    api_key = (await ui.prompt_secret("Enter your API key") or "").strip()
    if not api_key:
        raise CredentialMissing()
    store.set(api_key)
    return api_key


class Orchestrator:
    """
    Main completion loop.

    Parameters
    ----------
    provider : Provider
        Chat-completion transport.
    ui : OperatorInterface
        Pickers, confirmations, progress and notifications.
    config : NbchatConfig
        Loaded configuration.
    registry : ToolRegistry
        Tools offered to the model.  ``None`` sends no tool schemas.
    counter_factory : callable
        Builds a ``TokenCounter`` for a model name.
    repair : callable
        Fallback used when tool-call arguments are not valid JSON.  Defaults
        to a ``JsonRepairer`` on the same provider.
    """

    def __init__(
        self,
        provider: Provider,
        ui: OperatorInterface,
        config: NbchatConfig | None = None,
        registry: ToolRegistry | None = None,
        counter_factory: Callable[[str], TokenCounter] = TokenCounter,
        repair: JsonRepair | None = None,
    ) -> None:
        self.provider = provider
        self.ui = ui
        self.config = config or NbchatConfig()
        self.registry = registry
        self.counter_factory = counter_factory
        self.repair = repair or JsonRepairer(provider, self.config.llm.repair_model)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate_cells(
        self,
        context: SessionContext,
        index: int,
        completion_type: CompletionType | None = None,
        cancel: CancellationToken | None = None,
    ) -> FinishReason | None:
        """
        Run :meth:`generate_completion` and present any failure once.

        Returns the finish reason, or ``None`` after a failure was shown.
        """
        try:
            return await self.generate_completion(context, index, completion_type, cancel)
        except TransportCancelled:
            self.ui.info("Completion cancelled.")
            return FinishReason.CANCELLED
        except CompletionError as exc:
            logger.error("Completion failed [%s]: %s", exc.code, exc)
            self.ui.error(str(exc), exc.detail)
            return None
        except httpx.HTTPError as exc:
            logger.error("Transport failure: %s", exc)
            self.ui.error("The request to the API failed.", str(exc))
            return None

    async def generate_completion(
        self,
        context: SessionContext,
        index: int,
        completion_type: CompletionType | None = None,
        cancel: CancellationToken | None = None,
    ) -> FinishReason:
        """
        Generate model output below the unit at *index* of the captured document.

        Raises the ``CompletionError`` family; cancellation by the operator
        surfaces as ``TransportCancelled``.
        """
        cancel = cancel or CancellationToken()
        completion_type = CompletionType(
            completion_type or self.config.completion.default_mode
        )
        document = context.document
        params = context.parameters

        model = await self._resolve_model(document, params)
        counter = self.counter_factory(model)
        tools = self.registry.to_openai_schema() if self.registry else []

        segmenter = CellSegmenter(
            document, index, cancel, progress=self.ui.report_progress
        )
        # Tool messages keyed by the unit that was last written when the round ran.
        tool_messages: dict[int, list[Message]] = {}
        tool_rounds = 0
        continuations = 0

        try:
            while True:
                if cancel.is_cancelled:
                    raise TransportCancelled("Cancelled by the operator")

                messages = await build_messages(
                    document,
                    index,
                    completion_type,
                    through=segmenter.index,
                    follow_ups=tool_messages,
                )

                decision = await self._fit_budget(messages, tools, model, counter, params)
                if decision is None:
                    return FinishReason.CANCELLED

                request = CompletionRequest(
                    model=model,
                    messages=decision.messages,
                    tools=tools,
                    parameters=params.request_fields(),
                    max_tokens=decision.max_tokens,
                )
                result = await self._stream(request, segmenter, cancel)
                logger.info(
                    "Stream finished: %s (last unit %d)",
                    result.reason.value,
                    result.last_index,
                )

                if result.reason == FinishReason.CANCELLED:
                    raise TransportCancelled("Cancelled by the operator")

                if result.reason == FinishReason.TOOLS_CALL and result.tool_calls:
                    tool_rounds += 1
                    if tool_rounds > self.config.completion.max_tool_rounds:
                        self.ui.warn(
                            f"Stopped after {self.config.completion.max_tool_rounds} "
                            f"tool call rounds."
                        )
                        return FinishReason.TOOLS_CALL
                    tool_messages.setdefault(result.last_index, []).extend(
                        await self._run_tools(
                            result.tool_calls, document, result.last_index, cancel
                        )
                    )
                    continue

                if (
                    result.reason == FinishReason.LENGTH
                    and continuations < self.config.completion.max_continuations
                ):
                    continuations += 1
                    logger.info("Reply truncated, continuing (%d)", continuations)
                    continue

                if result.reason == FinishReason.LENGTH:
                    self.ui.warn("The reply was cut off because it reached the token limit.")
                elif result.reason == FinishReason.CONTENT_FILTER:
                    self.ui.warn("The reply was stopped by the provider's content filter.")
                return result.reason
        finally:
            await segmenter.close()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _resolve_model(self, document: Document, params: RequestParameters) -> str:
        model = params.model or self.config.llm.default_model
        if model:
            return model
        choice = await self.ui.select_model(list(self.config.llm.models))
        if not choice:
            raise ModelNotSet()
        await document.update_metadata("model", choice)
        params.model = choice
        return choice

    async def _fit_budget(
        self,
        messages: list[Message],
        tools: list[dict],
        model: str,
        counter: TokenCounter,
        params: RequestParameters,
    ) -> BudgetDecision | None:
        """
        Check *messages* against the model's window.

        Returns ``None`` when the request must not be sent.
        """
        profile = get_model_profile(
            model, self.config.llm.context_windows, self.config.llm.output_limits
        )
        limit = profile.context_window_tokens
        if limit is None:
            logger.warning("No context window known for %s; skipping token checks", model)
            self.ui.warn(
                f"The token limit for {model} is unknown; token limit checks are skipped."
            )
            return BudgetDecision(messages, params.max_tokens)

        try:
            count = counter.count_messages(messages, tools)
        except UnknownModelTokenizer as exc:
            logger.warning("%s", exc)
            self.ui.warn(exc.detail)
            return BudgetDecision(messages, params.max_tokens)

        logger.info("Prompt tokens: %d / %d", count, limit)
        if count > limit:
            mitigator = OverflowMitigator(
                counter, self.ui, self.config.reduction.hide_unhelpful_strategies
            )
            try:
                reduced = await mitigator.mitigate(messages, count - limit, limit, tools)
            except InsufficientReduction as exc:
                self.ui.error(str(exc), exc.detail)
                return None
            if reduced is None:
                self.ui.info("Request not sent.")
                return None
            messages = reduced
            count = counter.count_messages(messages, tools)

        max_tokens = limit - count
        if profile.max_output_tokens is not None:
            max_tokens = min(max_tokens, profile.max_output_tokens)
        if params.max_tokens is not None:
            max_tokens = min(max_tokens, params.max_tokens)
        if max_tokens < 1:
            send_anyway = await self.ui.confirm(
                f"The prompt uses {count} of {limit} tokens, leaving no room for "
                f"a reply. Send without max_tokens anyway?"
            )
            if not send_anyway:
                return None
            max_tokens = None
        return BudgetDecision(messages, max_tokens)

    async def _stream(
        self,
        request: CompletionRequest,
        segmenter: CellSegmenter,
        cancel: CancellationToken,
    ) -> SegmentationResult:
        assembler = ToolCallAssembler(repair=self.repair)
        events = self.provider.stream(request, cancel)
        units = merge_tool_calls(coalesce(normalize_stream(events, cancel)), assembler)
        async with open_channel(units) as channel:
            return await segmenter.consume(channel)

    async def _run_tools(
        self,
        calls: list[ToolCallRequest],
        document: Document,
        unit_index: int,
        cancel: CancellationToken,
    ) -> list[Message]:
        """
        Ask which calls may run, run them, and frame every outcome.

        Every outcome is also recorded under the ``tool_results`` metadata
        key of the unit at *unit_index*, so it survives a save.
        """
        approved = await self.ui.select_tool_calls(calls)
        approved_indexes = {c.index for c in approved or []}

        messages: list[Message] = []
        records: list[dict] = []
        for call in calls:
            if cancel.is_cancelled:
                raise TransportCancelled("Cancelled by the operator")
            outcome: ToolOutcome
            if call.index in approved_indexes:
                outcome = Executed(self._result_text(await self._execute_tool_call(call)))
            else:
                outcome = Declined()
            logger.info("Tool %s (%s): %r", call.name, call.id, outcome)
            messages.extend(tool_result_messages(call, outcome))
            records.append(self._outcome_record(call, outcome))

        units = await document.read_units(unit_index, unit_index + 1)
        if units:
            existing = list(units[0].metadata.get("tool_results") or [])
            await document.update_unit_metadata(
                unit_index, "tool_results", existing + records
            )
        return messages

    @staticmethod
    def _outcome_record(call: ToolCallRequest, outcome: ToolOutcome) -> dict:
        executed = isinstance(outcome, Executed)
        return {
            "id": call.id,
            "name": call.name,
            "arguments": call.function.arguments,
            "status": "executed" if executed else "declined",
            "result": outcome.text if executed else None,
        }

    @staticmethod
    def _result_text(result: ToolResult) -> str:
        if not result.success and result.error:
            return f"[Error: {result.error_code}] {result.error}"
        return result.content

    async def _execute_tool_call(self, call: ToolCallRequest) -> ToolResult:
        """
        Execute one approved tool call.

        Steps:
        1. Registry lookup
        2. Validate args
        3. Execute with timeout
        """
        tool = self.registry.get(call.name) if self.registry else None
        if tool is None:
            return ToolResult(
                success=False,
                content=f"Unknown tool: {call.name}",
                error=f"Unknown tool: {call.name}",
                error_code=ErrorCode.UNKNOWN_TOOL,
            )

        arguments, error_msg = ToolValidator.check_call(tool, call)
        if error_msg:
            return ToolResult(
                success=False,
                content=f"Validation error: {error_msg}",
                error=error_msg,
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        timeout = self.config.completion.tool_timeout_seconds
        logger.info("Executing %s %s", call.name, json.dumps(arguments))
        try:
            return await asyncio.wait_for(tool.execute(**arguments), timeout=timeout)
        except asyncio.TimeoutError:
            return ToolResult(
                success=False,
                content=f"Tool timed out after {timeout}s",
                error=f"Timeout after {timeout}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except Exception as e:
            logger.exception("Tool %s failed", call.name)
            return ToolResult(
                success=False,
                content=f"Tool exception: {e}",
                error=str(e),
                error_code=ErrorCode.TOOL_EXCEPTION,
            )
