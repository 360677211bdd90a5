"""
Turns a provider's raw response bytes into normalized stream events.

Chunk boundaries are arbitrary: a chunk may hold several lines, part of a
line, or part of a multi-byte UTF-8 sequence.  The normalizer keeps an
incremental decoder and a line buffer so that only complete lines are
interpreted.  Accepted line framings::

    data: {json}          SSE payload
    data: [DONE]          end of stream, nothing after it is emitted
    event: <name>         ignored (payloads carry their own type)
    {json}                bare JSON line

Comment (``:``), ``id:`` and ``retry:`` lines and blank lines are skipped.
A line whose payload is not valid JSON is logged and skipped; it never
aborts the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from chatloop.llm.types import StreamEvent

if TYPE_CHECKING:
    from chatloop.llm.providers.base import EventDecoder

logger = logging.getLogger(__name__)

_DONE = "[DONE]"
_SKIP_PREFIXES = (":", "id:", "retry:", "event:")


class StreamNormalizer:
    """
    Incremental bytes-to-events converter for one provider stream.

    Parameters
    ----------
    decoder:
        Vendor ``EventDecoder`` that maps each parsed JSON payload to zero
        or more events.
    """

    def __init__(self, decoder: EventDecoder) -> None:
        self._decoder = decoder
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_lines = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one raw chunk and return the events it completes."""
        if self.done:
            return []
        text = self._utf8.decode(chunk)

        # A whole JSON object delivered without a trailing newline.
        if not self._buffer and "\n" not in text:
            payload = self._whole_json(text)
            if payload is not None:
                return self._decode(payload)

        self._buffer += text
        events: list[StreamEvent] = []
        while "\n" in self._buffer and not self.done:
            line, self._buffer = self._buffer.split("\n", 1)
            events.extend(self._process_line(line))
        return events

    def close(self) -> list[StreamEvent]:
        """Flush the decoder and interpret any final unterminated line."""
        if self.done:
            return []
        self._buffer += self._utf8.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        events: list[StreamEvent] = []
        for line in remainder.split("\n"):
            if self.done:
                break
            events.extend(self._process_line(line))
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _process_line(self, line: str) -> list[StreamEvent]:
        line = line.rstrip("\r").strip()
        if not line or line.startswith(_SKIP_PREFIXES):
            return []

        if line.startswith("data:"):
            data_str = line[len("data:"):].strip()
        else:
            data_str = line

        if data_str == _DONE:
            self.done = True
            return []
        if not data_str:
            return []

        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError:
            self.skipped_lines += 1
            logger.warning("Failed to parse stream line: %s", data_str[:200])
            return []
        if not isinstance(payload, dict):
            self.skipped_lines += 1
            logger.warning("Ignoring non-object stream payload: %s", data_str[:200])
            return []
        return self._decode(payload)

    def _decode(self, payload: dict[str, Any]) -> list[StreamEvent]:
        try:
            return self._decoder.decode(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            self.skipped_lines += 1
            logger.warning("Could not decode stream payload (%s): %s", exc, str(payload)[:200])
            return []

    @staticmethod
    def _whole_json(text: str) -> dict[str, Any] | None:
        stripped = text.strip()
        if not stripped.startswith("{"):
            return None
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None


async def normalize_stream(
    byte_stream: AsyncIterator[bytes],
    decoder: EventDecoder,
) -> AsyncIterator[StreamEvent]:
    """Async convenience wrapper: yield events from an async byte iterator."""
    normalizer = StreamNormalizer(decoder)
    async for chunk in byte_stream:
        for event in normalizer.feed(chunk):
            yield event
        if normalizer.done:
            return
    for event in normalizer.close():
        yield event
