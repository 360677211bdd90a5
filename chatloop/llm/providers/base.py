"""Abstract base classes for LLM provider adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator

import httpx

from chatloop.errors import ProviderError
from chatloop.llm.types import ROLE_ASSISTANT, Message, StreamEvent

if TYPE_CHECKING:
    from chatloop.tools.base import Tool

logger = logging.getLogger(__name__)


class EventDecoder(ABC):
    """
    Maps one vendor's parsed stream payloads to normalized events.

    A decoder is stateful (it tracks which tool-call blocks are open) and
    lives for exactly one stream.
    """

    @abstractmethod
    def decode(self, data: dict[str, Any]) -> list[StreamEvent]:
        ...


class Provider(ABC):
    """
    Adapter for a single LLM vendor.

    Implementations must:
      - Project the tool registry's declarations into the vendor schema
        (``map_tools``).
      - Project the system prompt into the vendor convention
        (``format_system``).
      - Open a streaming completion and expose its raw bytes
        (``stream_completion``), raising ``ProviderError`` on non-2xx.
      - Supply a fresh ``EventDecoder`` for each stream.

    Parameters
    ----------
    api_key:
        Credential sent with every request.
    base_url:
        Vendor API root, e.g. ``"https://api.openai.com/v1"``.
    timeout:
        HTTP timeout in seconds.
    max_output_tokens:
        Completion budget requested from the vendor.
    max_retries:
        Retries on 429/5xx before any byte has been received.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 120.0,
        max_output_tokens: int = 4096,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_output = max_output_tokens
        self._max_retries = max_retries
        self._transport = transport

    # ------------------------------------------------------------------
    # Vendor projection
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def name(self) -> str:
        """Vendor name (e.g. ``"anthropic"``)."""
        ...

    @abstractmethod
    def resolve_model(self, model: str | None) -> str:
        ...

    @abstractmethod
    def map_tools(self, tools: list[Tool]) -> list[dict]:
        ...

    @abstractmethod
    def format_system(self, sections: list[str]) -> Any:
        ...

    @abstractmethod
    def build_body(
        self,
        messages: list[Message],
        system_prompt: list[str],
        model: str | None,
        tools: list[Tool],
    ) -> dict:
        ...

    @abstractmethod
    def build_headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def endpoint(self) -> str:
        ...

    @abstractmethod
    def new_decoder(self) -> EventDecoder:
        ...

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream_completion(
        self,
        messages: list[Message],
        system_prompt: list[str],
        model: str | None,
        tools: list[Tool],
    ) -> AsyncIterator[bytes]:
        """
        Open a streaming completion and yield raw response bytes.

        Raises ``ProviderError`` when the response status is not 2xx or the
        connection cannot be established.
        """
        body = self.build_body(messages, system_prompt, model, tools)
        headers = self.build_headers()
        url = self.endpoint()
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d api_key=%s...",
            self.name,
            body.get("model"),
            len(tools),
            len(messages),
            self._api_key[:8] if self._api_key else "(none)",
        )

        last_error: ProviderError | None = None
        started = False
        for attempt in range(1 + self._max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code >= 300:
                            text = (await response.aread()).decode("utf-8", errors="replace")
                            last_error = ProviderError(response.status_code, text, self.name)
                            if response.status_code == 429 or response.status_code >= 500:
                                logger.warning(
                                    "%s returned HTTP %d (attempt %d)",
                                    self.name, response.status_code, attempt + 1,
                                )
                                continue
                            logger.error("%s API error response: %s", self.name, text[:500])
                            raise last_error

                        async for raw_bytes in response.aiter_bytes():
                            started = True
                            yield raw_bytes
                        return  # success
            except httpx.TransportError as exc:
                last_error = ProviderError(0, str(exc), self.name)
                if attempt < self._max_retries and not started:
                    continue
                raise last_error from exc

        if last_error is not None:
            raise last_error


def render_content(message: Message) -> str:
    """
    Plain-text content for the wire.

    Vendors reject empty assistant turns, so a tool-only assistant message
    is rendered as a short note naming the tools it called.
    """
    if message.content:
        return message.content
    if message.role == ROLE_ASSISTANT and message.tool_calls:
        names = ", ".join(tc.name for tc in message.tool_calls)
        return f"[Called tools: {names}]"
    return "(empty)"
