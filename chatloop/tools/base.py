from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chatloop.config import LoopConfig
from chatloop.types import ToolResult


class ToolKind(Enum):
    ANALYSIS = "analysis"
    CONTROL = "control"
    SIDE_EFFECT = "side_effect"


def tool_kind(name: str, loop: LoopConfig) -> ToolKind:
    """Classify *name* by the loop's continue, terminal and analysis tool sets."""
    if name in loop.continue_tools or name in loop.terminal_tools:
        return ToolKind.CONTROL
    if name in loop.analysis_tools:
        return ToolKind.ANALYSIS
    return ToolKind.SIDE_EFFECT


@dataclass(frozen=True)
class ToolParam:
    """One declared input field: primitive JSON type, required flag, description."""

    name: str
    type: str = "string"
    description: str = ""
    required: bool = True
    items: dict | None = None

    def to_schema(self) -> dict:
        s: dict[str, Any] = {"type": self.type}
        if self.description:
            s["description"] = self.description
        if self.items is not None:
            s["items"] = self.items
        return s


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    s.setdefault("required", [])
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    def params(self) -> list[ToolParam]:
        return []

    @property
    def timeout_class(self) -> str:
        return "default"

    def input_schema(self) -> dict:
        return normalize_schema({
            "properties": {p.name: p.to_schema() for p in self.params},
            "required": [p.name for p in self.params if p.required],
        })

    def apply_defaults(self, arguments: dict) -> dict:
        """Tool-specific argument backfill; the base implementation is a copy."""
        return dict(arguments)

    def prepare_arguments(self, arguments: dict | None) -> dict:
        """Backfill defaults and drop keys the tool does not declare."""
        args = self.apply_defaults(arguments or {})
        declared = {p.name for p in self.params}
        return {k: v for k, v in args.items() if k in declared}

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def describe(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema(),
            "timeoutClass": self.timeout_class,
        }
