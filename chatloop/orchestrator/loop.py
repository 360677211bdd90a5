"""
Conversation Loop -- drives a streaming, tool-calling conversation to completion.

Per iteration the loop:
1. Sends the full history (system prompt out-of-band) to the provider
2. Normalizes the byte stream, streaming text out and assembling tool calls
3. Stops with ``model-no-tools`` if the turn produced no valid tool calls
4. Otherwise executes the calls, appends the assistant and tool-result
   messages to history, and asks the continuation policy whether to go on

On any non-cancelled exit the accumulated text and tool-call record are
persisted exactly once and a ``done`` event is emitted.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

import httpx

from chatloop.config import LoopConfig, ToolsConfig
from chatloop.errors import ProviderError
from chatloop.llm.providers.base import Provider
from chatloop.llm.stream_normalizer import StreamNormalizer
from chatloop.llm.tool_call_assembler import ToolCallAssembler
from chatloop.llm.types import (
    ROLE_ASSISTANT,
    ROLE_TOOL_RESULT,
    Message,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
)
from chatloop.orchestrator.events import (
    BATCH_SUMMARY_NAME,
    DoneEvent,
    ErrorEvent,
    IterationEvent,
    LoopEvent,
    TextEvent,
    ToolErrorEvent,
    ToolResultEvent,
)
from chatloop.orchestrator.executor import ToolExecutor, ToolOutcome
from chatloop.orchestrator.policy import ContinuationPolicy, TerminationReason
from chatloop.orchestrator.truncation import TruncationLimits, format_tool_results_message
from chatloop.tools.batch import batch_payload
from chatloop.tools.registry import ToolRegistry
from chatloop.types import ErrorCode

logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_calls: list[dict] | None = None,
    ) -> None: ...


@dataclass
class LoopState:
    iteration: int = 0
    max_iterations: int = 10
    history: list[Message] = field(default_factory=list)
    terminated: bool = False
    termination_reason: TerminationReason | None = None
    texts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        return "\n\n".join(t for t in self.texts if t)


class ConversationLoop:
    """
    One request's conversation loop.

    Parameters
    ----------
    provider : Provider
        Adapter for the resolved vendor.
    registry : ToolRegistry
        Tools offered to the model for this request.
    model : str | None
        Concrete model id (``None`` lets the adapter pick its default).
    system_prompt : list[str]
        System prompt sections; each adapter formats them its own way.
    loop_config, tools_config
        Continuation sets, default cap, timeouts and truncation limits.
    max_iterations : int | None
        Per-request cap override.
    enable_loop : bool | None
        ``False`` runs exactly one iteration.
    store : MessageSink | None
        Persistence collaborator for the final assistant message.
    conversation_id : str | None
        Conversation the final message is saved under.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        *,
        model: str | None = None,
        system_prompt: list[str] | None = None,
        loop_config: LoopConfig | None = None,
        tools_config: ToolsConfig | None = None,
        max_iterations: int | None = None,
        enable_loop: bool | None = None,
        store: MessageSink | None = None,
        conversation_id: str | None = None,
    ) -> None:
        loop_config = loop_config or LoopConfig()
        self.provider = provider
        self.registry = registry
        self.model = model
        self.system_prompt = system_prompt or []
        self.policy = ContinuationPolicy.from_config(loop_config)
        self.tools_config = tools_config or ToolsConfig()
        self.limits = TruncationLimits.from_config(self.tools_config)
        self.enable_loop = loop_config.enable_loop_default if enable_loop is None else enable_loop
        self.executor = ToolExecutor(registry, self.tools_config)
        self.store = store
        self.conversation_id = conversation_id
        self.state = LoopState(max_iterations=max(1, max_iterations or loop_config.max_iterations))
        self._persisted = False

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, messages: list[Message]) -> AsyncIterator[LoopEvent]:
        state = self.state
        state.history = list(messages)
        tools = self.registry.list()

        try:
            while not state.terminated:
                state.iteration += 1
                if state.iteration > 1:
                    yield IterationEvent(state.iteration, state.max_iterations)
                logger.info("Iteration %d/%d", state.iteration, state.max_iterations)

                text_parts: list[str] = []
                assembler = ToolCallAssembler()
                try:
                    async with aclosing(self._provider_events(tools)) as events:
                        async for event in events:
                            if isinstance(event, TextDelta):
                                text_parts.append(event.content)
                                yield TextEvent(event.content)
                            elif isinstance(event, ToolCallStart):
                                assembler.start(event)
                            elif isinstance(event, ToolCallArgDelta):
                                assembler.add_fragment(event)
                            elif isinstance(event, ToolCallEnd):
                                assembler.end(event)
                except (ProviderError, httpx.HTTPError) as exc:
                    state.texts.append("".join(text_parts))
                    logger.error("Provider stream failed: %s", exc)
                    if isinstance(exc, ProviderError):
                        yield ErrorEvent(exc.message, exc.code)
                    else:
                        yield ErrorEvent("Streaming error occurred", ErrorCode.PROVIDER_ERROR)
                    self._terminate(TerminationReason.STREAM_ERROR)
                    break

                assembler.flush()
                text = "".join(text_parts)
                state.texts.append(text)
                calls = [c for c in assembler.completed if c.name]

                if not calls:
                    state.history.append(Message(role=ROLE_ASSISTANT, content=text))
                    self._terminate(TerminationReason.MODEL_NO_TOOLS)
                    break

                state.tool_calls.extend(calls)
                outcomes: list[ToolOutcome] = []
                async with aclosing(self.executor.run(calls)) as results:
                    async for outcome in results:
                        outcomes.append(outcome)
                        for client_event in self._outcome_events(outcome):
                            yield client_event
                outcomes.sort(key=lambda o: o.position)

                state.history.append(Message(role=ROLE_ASSISTANT, content=text, tool_calls=calls))
                state.history.append(Message(
                    role=ROLE_TOOL_RESULT,
                    content=format_tool_results_message(outcomes, self.limits),
                ))

                decision = self.policy.decide(
                    (c.name for c in calls),
                    state.iteration,
                    state.max_iterations,
                    self.enable_loop,
                )
                if not decision.proceed:
                    self._terminate(decision.reason)
        finally:
            self.executor.cancel_pending()

        await self._persist()
        yield DoneEvent(state.termination_reason.value, state.iteration)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _provider_events(self, tools: list) -> AsyncIterator[StreamEvent]:
        normalizer = StreamNormalizer(self.provider.new_decoder())
        stream = self.provider.stream_completion(
            self.state.history, self.system_prompt, self.model, tools
        )
        try:
            async with aclosing(stream) as chunks:
                async for chunk in chunks:
                    for event in normalizer.feed(chunk):
                        yield event
                    if normalizer.done:
                        return
            for event in normalizer.close():
                yield event
        finally:
            if normalizer.skipped_lines:
                logger.warning(
                    "Iteration %d: skipped %d undecodable stream line(s)",
                    self.state.iteration, normalizer.skipped_lines,
                )

    def _outcome_events(self, outcome: ToolOutcome) -> list[LoopEvent]:
        name = outcome.call.name
        raw = outcome.raw_result
        payload = batch_payload(raw) if name == "batch_tool" else None
        if payload is not None:
            invocations = outcome.arguments.get("invocations") or []
            events: list[LoopEvent] = []
            for i, item in enumerate(payload["batch_results"]):
                inv = invocations[i] if i < len(invocations) and isinstance(invocations[i], dict) else {}
                events.append(ToolResultEvent(
                    inv.get("name", item.get("tool", "unknown_tool")),
                    inv.get("arguments") or {},
                    item,
                ))
            events.append(ToolResultEvent(
                BATCH_SUMMARY_NAME,
                outcome.arguments,
                {
                    "success": raw.success,
                    "total_invocations": payload["total_invocations"],
                    "successful_invocations": payload["successful_invocations"],
                    "message": raw.message,
                },
            ))
            return events

        if raw.success:
            return [ToolResultEvent(name, outcome.arguments, raw.to_dict())]
        return [ToolErrorEvent(name, raw.error or "Tool failed", raw.error_code, outcome.arguments)]

    def _terminate(self, reason: TerminationReason) -> None:
        self.state.terminated = True
        self.state.termination_reason = reason
        logger.info("Loop terminated after %d iteration(s): %s", self.state.iteration, reason.value)

    async def _persist(self) -> None:
        if self._persisted or self.store is None or not self.conversation_id:
            return
        self._persisted = True
        record: list[dict[str, Any]] | None = [c.to_dict() for c in self.state.tool_calls] or None
        try:
            await self.store.save_message(
                self.conversation_id, ROLE_ASSISTANT, self.state.full_text, record
            )
        except Exception:
            logger.exception("Failed to save assistant message")
