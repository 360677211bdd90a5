"""
Tool Execution Stage.

Runs every tool call of a turn concurrently, each bounded by its tool's
timeout class.  Outcomes are yielded as they complete (for progressive
streaming) and can be collected back into call order for history.  A
failing call never short-circuits its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator

from chatloop.config import ToolsConfig
from chatloop.llm.types import ToolCall
from chatloop.orchestrator.truncation import TruncationLimits, truncate_result
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.runner import run_tool, tool_not_found
from chatloop.types import ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """
    Result of one call.

    ``result`` is the truncated form that goes into history;
    ``raw_result`` is what the tool actually returned.
    """

    position: int
    call: ToolCall
    arguments: dict
    result: ToolResult
    raw_result: ToolResult
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.result.success


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, tools_config: ToolsConfig | None = None) -> None:
        self.registry = registry
        self._config = tools_config or ToolsConfig()
        self._limits = TruncationLimits.from_config(self._config)
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, calls: list[ToolCall]) -> AsyncIterator[ToolOutcome]:
        """Yield one outcome per call, in completion order."""
        tasks = [
            asyncio.create_task(self._execute_one(i, call), name=f"tool:{call.name}")
            for i, call in enumerate(calls)
        ]
        self._pending.update(tasks)
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            self._pending.difference_update(tasks)

    async def execute(self, calls: list[ToolCall]) -> list[ToolOutcome]:
        """Run all calls and return outcomes in call order."""
        outcomes = [o async for o in self.run(calls)]
        return sorted(outcomes, key=lambda o: o.position)

    def cancel_pending(self) -> None:
        """Cancel any tool tasks still running (client went away)."""
        for t in list(self._pending):
            if not t.done():
                t.cancel()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute_one(self, position: int, call: ToolCall) -> ToolOutcome:
        start = time.monotonic()
        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("Model called unknown tool %r", call.name)
            raw = tool_not_found(call.name)
            arguments = dict(call.arguments)
        else:
            arguments = tool.prepare_arguments(call.arguments)
            timeout = self._config.timeout_for(tool.timeout_class)
            raw = await run_tool(tool, arguments, timeout)

        duration_ms = int((time.monotonic() - start) * 1000)
        if not raw.success:
            logger.warning("Tool %s failed (%s): %s", call.name, raw.error_code, raw.error)
        return ToolOutcome(
            position=position,
            call=call,
            arguments=arguments,
            result=truncate_result(raw, self._limits),
            raw_result=raw,
            duration_ms=duration_ms,
        )
