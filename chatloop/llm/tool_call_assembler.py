"""
Assembles streamed tool-call events into complete ToolCall objects.

Design goals:
  - Accumulate argument fragments keyed by the call's stream ``index``.
  - A literal ``"null"`` fragment resets the buffer to ``"{}"``; some
    vendors send explicit null argument strings that must not be
    concatenated as text.
  - On ``ToolCallEnd`` (or an explicit ``flush()`` at stream close) the
    buffer is frozen and JSON-parsed.  A parse failure yields empty
    arguments and an entry in ``self.errors``; the call itself survives.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from chatloop.llm.types import ToolCall, ToolCallArgDelta, ToolCallEnd, ToolCallStart

logger = logging.getLogger(__name__)

_EMPTY_ARGS = ("", "{}", "null")


def parse_arguments(raw: str) -> tuple[dict[str, Any], str | None]:
    """
    Parse an accumulated argument buffer.

    Returns ``(arguments, error)``.  Empty, ``"{}"`` and ``"null"`` buffers
    parse to ``{}`` without error.
    """
    text = (raw or "").strip()
    if text in _EMPTY_ARGS:
        return {}, None
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        return {}, str(exc)
    if not isinstance(parsed, dict):
        return {}, f"expected a JSON object, got {type(parsed).__name__}"
    return parsed, None


class ToolCallAssembler:
    """Buffers tool-call events and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.completed: list[ToolCall] = []
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, event: ToolCallStart) -> None:
        buf = self._buffer(event.index)
        if event.id and not buf["id"]:
            buf["id"] = event.id
        if event.name:
            buf["name"] += event.name

    def add_fragment(self, event: ToolCallArgDelta) -> None:
        buf = self._buffer(event.index)
        if event.fragment == "null":
            buf["args"] = "{}"
        else:
            buf["args"] += event.fragment

    def end(self, event: ToolCallEnd) -> ToolCall | None:
        """
        Freeze and parse the call at ``event.index``.

        Returns ``None`` when no call is open at that index (already
        finalized, or an end marker for a block that never started).
        """
        if event.id and event.index in self._buf and not self._buf[event.index]["id"]:
            self._buf[event.index]["id"] = event.id
        return self._finalize(event.index)

    def flush(self) -> list[ToolCall]:
        """
        Finalize *all* remaining buffers using whatever arguments have
        accumulated.  Used when the stream closes without end markers.
        """
        calls: list[ToolCall] = []
        for idx in sorted(self._buf.keys()):
            call = self._finalize(idx)
            if call is not None:
                calls.append(call)
        return calls

    @property
    def pending(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.completed.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _buffer(self, idx: int) -> dict:
        return self._buf.setdefault(idx, {"id": None, "name": "", "args": ""})

    def _finalize(self, idx: int) -> ToolCall | None:
        buf = self._buf.pop(idx, None)
        if buf is None:
            return None

        name = buf["name"].strip()
        args, error = parse_arguments(buf["args"])
        if error is not None:
            self.errors.append(
                f"tool_call_json_parse_failed idx={idx} name={name} err={error}"
            )
            logger.warning(
                "Could not parse arguments for tool call %s (%s): %s",
                idx, name or "?", error,
            )

        call = ToolCall(
            id=buf["id"] or f"call_{idx}",
            name=name,
            arguments=args,
            raw_arguments=buf["args"],
        )
        self.completed.append(call)
        return call
