"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL_RESULT = "tool_result"


@dataclass
class ToolCall:
    """A model-issued tool invocation with parsed arguments."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Message:
    """
    A single message in a conversation.

    History is append-only; a ``tool_result`` message always directly
    follows the assistant message whose tool calls it answers.
    """

    role: str  # "user", "assistant", "tool_result"
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        content = data.get("content") or ""
        if not isinstance(content, str):
            # Clients occasionally send block lists; keep the text parts only.
            content = " ".join(
                block.get("text", "") for block in content if isinstance(block, dict)
            )
        return cls(role=data.get("role", ROLE_USER), content=content)


# ---------------------------------------------------------------------------
# Normalized stream events
# ---------------------------------------------------------------------------


@dataclass
class TextDelta:
    content: str


@dataclass
class ToolCallStart:
    index: int
    id: str = ""
    name: str = ""


@dataclass
class ToolCallArgDelta:
    index: int
    fragment: str


@dataclass
class ToolCallEnd:
    index: int
    id: str = ""


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallArgDelta, ToolCallEnd]
