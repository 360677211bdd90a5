"""LLM subsystem -- providers, stream normalization, and tool-call assembly."""

from chatloop.llm.types import (
    Message,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallEnd,
    ToolCallStart,
)
from chatloop.llm.stream_normalizer import StreamNormalizer, normalize_stream
from chatloop.llm.tool_call_assembler import ToolCallAssembler

__all__ = [
    "Message",
    "StreamEvent",
    "StreamNormalizer",
    "TextDelta",
    "ToolCall",
    "ToolCallArgDelta",
    "ToolCallAssembler",
    "ToolCallEnd",
    "ToolCallStart",
    "normalize_stream",
]
