"""
Transport encoder: renders loop events as server-sent-event frames.

Every frame is a single ``data:`` line carrying one JSON object followed by
a blank line.  JSON string escaping guarantees no raw newline can split a
frame.
"""

from __future__ import annotations

import json
from typing import Any

from chatloop.orchestrator.events import LoopEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def encode_event(event: LoopEvent) -> str:
    return encode_frame(event.to_frame())
