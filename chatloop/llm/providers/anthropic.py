"""
Anthropic Messages API provider.

Speaks the ``/v1/messages`` streaming protocol directly over ``httpx``.
System prompts are sent as a list of text blocks; when cache hints are
enabled the system prompt and the most recent history turns carry
``cache_control`` markers within the vendor's four-breakpoint budget.

Long histories are split at a user turn: older turns are folded into a
``<conversation_history>`` system block and only the recent turns are sent
as messages.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from chatloop.llm.models import ANTHROPIC, resolve_anthropic_model
from chatloop.llm.providers.base import EventDecoder, Provider, render_content
from chatloop.llm.types import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    StreamEvent,
    TextDelta,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
)

if TYPE_CHECKING:
    from chatloop.tools.base import Tool

logger = logging.getLogger(__name__)

_CACHE_BREAKPOINTS = 4
_EPHEMERAL = {"type": "ephemeral"}


def history_xml(messages: list[Message]) -> str:
    """Render *messages* as ``<turn>`` elements, each opened by a user message."""
    lines: list[str] = []
    in_turn = False
    for msg in messages:
        if msg.role == ROLE_USER:
            if in_turn:
                lines.append("</turn>")
            lines += ["<turn>", f"<user>{msg.content}</user>"]
            in_turn = True
        elif msg.role == ROLE_ASSISTANT:
            if msg.content:
                lines.append(f"<assistant>{msg.content}</assistant>")
            for call in msg.tool_calls:
                lines.append(f"<tool_use>{call.name}: {json.dumps(call.arguments)}</tool_use>")
        else:
            lines.append(f"<tool_result>{msg.content}</tool_result>")
    if in_turn:
        lines.append("</turn>")
    return "\n".join(lines)


class AnthropicDecoder(EventDecoder):
    """Maps ``content_block_*`` payloads to normalized events."""

    def __init__(self) -> None:
        self._open: dict[int, str] = {}  # block index -> tool_use id

    def decode(self, data: dict[str, Any]) -> list[StreamEvent]:
        kind = data.get("type")

        if kind == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                idx = int(data.get("index", 0))
                self._open[idx] = block.get("id", "")
                return [ToolCallStart(index=idx, id=block.get("id", ""), name=block.get("name", ""))]
            if block.get("type") == "text" and block.get("text"):
                return [TextDelta(block["text"])]
            return []

        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                text = delta.get("text", "")
                return [TextDelta(text)] if text else []
            if delta.get("type") == "input_json_delta":
                fragment = delta.get("partial_json", "")
                if fragment:
                    return [ToolCallArgDelta(index=int(data.get("index", 0)), fragment=fragment)]
            return []

        if kind == "content_block_stop":
            idx = int(data.get("index", 0))
            if idx in self._open:
                return [ToolCallEnd(index=idx, id=self._open.pop(idx))]
            return []

        if kind == "error":
            logger.warning("Anthropic stream error event: %s", data.get("error"))
        return []


class AnthropicProvider(Provider):
    """
    Provider for Anthropic's Messages API.

    Parameters
    ----------
    anthropic_version:
        Value of the ``anthropic-version`` header.
    cache_hints:
        Attach ephemeral ``cache_control`` markers to the system prompt and
        recent history.
    history_window:
        Histories longer than this many messages have their older turns
        moved into the system prompt; ``0`` sends everything as messages.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com/v1",
        timeout: float = 120.0,
        max_output_tokens: int = 4096,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        anthropic_version: str = "2023-06-01",
        cache_hints: bool = True,
        history_window: int = 6,
    ) -> None:
        super().__init__(api_key, base_url, timeout, max_output_tokens, max_retries, transport)
        self._version = anthropic_version
        self._cache_hints = cache_hints
        self._history_window = history_window

    @property
    def name(self) -> str:
        return ANTHROPIC

    def resolve_model(self, model: str | None) -> str:
        return resolve_anthropic_model(model)

    def map_tools(self, tools: list[Tool]) -> list[dict]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema(),
            }
            for tool in tools
        ]

    def format_system(self, sections: list[str], history: list[Message] | None = None) -> list[dict]:
        blocks = [{"type": "text", "text": s} for s in sections if s]
        if self._cache_hints and blocks:
            blocks[-1]["cache_control"] = dict(_EPHEMERAL)
        if history:
            block = {
                "type": "text",
                "text": f"<conversation_history>\n{history_xml(history)}\n</conversation_history>",
            }
            if self._cache_hints:
                block["cache_control"] = dict(_EPHEMERAL)
            blocks.append(block)
        return blocks

    def split_history(self, messages: list[Message]) -> tuple[list[Message], list[Message]]:
        """
        Return ``(older, recent)``.

        *recent* starts at the first user message inside the window, or at
        the last user message when none falls inside it.  A history with a
        single user turn is never split.
        """
        window = self._history_window
        if window <= 0 or len(messages) <= window:
            return [], list(messages)
        starts = [i for i, m in enumerate(messages) if i > 0 and m.role == ROLE_USER]
        if not starts:
            return [], list(messages)
        cut = next((i for i in starts if i >= len(messages) - window), starts[-1])
        return list(messages[:cut]), list(messages[cut:])

    def format_messages(self, messages: list[Message], system_breakpoints: int = 1) -> list[dict]:
        """
        Project history into Anthropic's user/assistant alternation.

        Tool-result turns are sent as ``user`` messages.  With cache hints
        on, the newest turns (except the last, which is the fresh input)
        get a ``cache_control`` marker on their final block.
        """
        wire: list[dict] = []
        for msg in messages:
            role = ROLE_ASSISTANT if msg.role == ROLE_ASSISTANT else "user"
            wire.append({"role": role, "content": [{"type": "text", "text": render_content(msg)}]})

        if not self._cache_hints or not wire:
            return wire

        available = max(_CACHE_BREAKPOINTS - system_breakpoints, 0)
        cache_from = max(len(wire) - available, 0)
        for i in range(cache_from, len(wire) - 1):
            wire[i]["content"][-1]["cache_control"] = dict(_EPHEMERAL)
        return wire

    def build_body(
        self,
        messages: list[Message],
        system_prompt: list[str],
        model: str | None,
        tools: list[Tool],
    ) -> dict:
        older, recent = self.split_history(messages)
        system = self.format_system(system_prompt, older)
        breakpoints = sum(1 for block in system if "cache_control" in block)
        body: dict = {
            "model": self.resolve_model(model),
            "max_tokens": self._max_output,
            "system": system,
            "messages": self.format_messages(recent, breakpoints),
            "stream": True,
        }
        if tools:
            body["tools"] = self.map_tools(tools)
        return body

    def build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "x-api-key": self._api_key,
            "anthropic-version": self._version,
        }

    def endpoint(self) -> str:
        return f"{self._url}/messages"

    def new_decoder(self) -> AnthropicDecoder:
        return AnthropicDecoder()
