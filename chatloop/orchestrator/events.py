"""
Client-facing loop events.

Each event renders to one SSE frame payload via ``to_frame()``; the
``type`` key is one of ``conversation_id``, ``text``, ``tool_result``,
``tool_error``, ``iteration``, ``error``, ``done``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

BATCH_SUMMARY_NAME = "batch_tool_summary"


@dataclass
class ConversationIdEvent:
    conversation_id: str

    def to_frame(self) -> dict[str, Any]:
        return {"type": "conversation_id", "conversationId": self.conversation_id}


@dataclass
class TextEvent:
    content: str

    def to_frame(self) -> dict[str, Any]:
        return {"type": "text", "content": self.content}


@dataclass
class ToolResultEvent:
    tool_name: str
    tool_input: dict
    result: dict

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "toolName": self.tool_name,
            "toolInput": self.tool_input,
            "result": self.result,
        }


@dataclass
class ToolErrorEvent:
    tool_name: str
    error: str
    error_code: str | None = None
    tool_input: dict = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "tool_error",
            "toolName": self.tool_name,
            "toolInput": self.tool_input,
            "error": self.error,
            "errorCode": self.error_code,
        }


@dataclass
class IterationEvent:
    iteration: int
    max_iterations: int

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "iteration",
            "iteration": self.iteration,
            "maxIterations": self.max_iterations,
        }


@dataclass
class ErrorEvent:
    content: str
    code: str | None = None

    def to_frame(self) -> dict[str, Any]:
        return {"type": "error", "content": self.content, "code": self.code}


@dataclass
class DoneEvent:
    reason: str
    iterations: int

    def to_frame(self) -> dict[str, Any]:
        return {"type": "done", "reason": self.reason, "iterations": self.iterations}


LoopEvent = Union[
    ConversationIdEvent,
    TextEvent,
    ToolResultEvent,
    ToolErrorEvent,
    IterationEvent,
    ErrorEvent,
    DoneEvent,
]
