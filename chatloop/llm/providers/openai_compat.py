"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol.  Groq is served by the same adapter with a different base URL and
default model.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from chatloop.llm.models import DEFAULT_MODELS, OPENAI
from chatloop.llm.providers.base import EventDecoder, Provider, render_content
from chatloop.llm.types import (
    ROLE_ASSISTANT,
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


class OpenAIDecoder(EventDecoder):
    """
    Maps ``choices[0].delta`` payloads to normalized events.

    The first delta seen for a tool-call index opens the call; any
    ``finish_reason`` closes every call still open.
    """

    def __init__(self) -> None:
        self._open: dict[int, str] = {}  # index -> call id

    def decode(self, data: dict[str, Any]) -> list[StreamEvent]:
        if "error" in data and not data.get("choices"):
            logger.warning("Stream error payload: %s", data.get("error"))
            return []

        choices = data.get("choices")
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        events: list[StreamEvent] = []

        content = delta.get("content")
        if content:
            events.append(TextDelta(content))

        for raw_tc in delta.get("tool_calls") or []:
            idx = int(raw_tc.get("index", 0))
            func = raw_tc.get("function") or {}
            if idx not in self._open:
                self._open[idx] = raw_tc.get("id") or ""
                events.append(
                    ToolCallStart(index=idx, id=raw_tc.get("id") or "", name=func.get("name") or "")
                )
            elif func.get("name"):
                events.append(ToolCallStart(index=idx, id=raw_tc.get("id") or "", name=func["name"]))

            args = func.get("arguments")
            if args:
                events.append(ToolCallArgDelta(index=idx, fragment=args))

        if choice.get("finish_reason") is not None:
            for idx in sorted(self._open):
                events.append(ToolCallEnd(index=idx, id=self._open[idx]))
            self._open.clear()

        return events


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    vendor:
        Name reported by ``name`` (``"openai"`` or ``"groq"``).
    default_model:
        Model used when the request does not name one.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        max_output_tokens: int = 4096,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        vendor: str = OPENAI,
        default_model: str | None = None,
    ) -> None:
        super().__init__(api_key, base_url, timeout, max_output_tokens, max_retries, transport)
        self._vendor = vendor
        self._default_model = default_model or DEFAULT_MODELS.get(vendor, DEFAULT_MODELS[OPENAI])

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._vendor

    def resolve_model(self, model: str | None) -> str:
        return model or self._default_model

    def map_tools(self, tools: list[Tool]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema(),
                },
            }
            for tool in tools
        ]

    def format_system(self, sections: list[str]) -> str:
        return "\n\n".join(s for s in sections if s)

    def format_messages(self, messages: list[Message], system: str) -> list[dict]:
        wire: list[dict] = []
        if system:
            wire.append({"role": "system", "content": system})
        for msg in messages:
            # Tool results go back as user turns; no tool_call_id threading.
            role = ROLE_ASSISTANT if msg.role == ROLE_ASSISTANT else "user"
            wire.append({"role": role, "content": render_content(msg)})
        return wire

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_body(
        self,
        messages: list[Message],
        system_prompt: list[str],
        model: str | None,
        tools: list[Tool],
    ) -> dict:
        body: dict = {
            "model": self.resolve_model(model),
            "messages": self.format_messages(messages, self.format_system(system_prompt)),
            "max_tokens": self._max_output,
            "stream": True,
        }
        if tools:
            body["tools"] = self.map_tools(tools)
            body["tool_choice"] = "auto"
        return body

    def endpoint(self) -> str:
        return f"{self._url}/chat/completions"

    def new_decoder(self) -> OpenAIDecoder:
        return OpenAIDecoder()
