"""
Batch meta-tool: fans a list of invocations out concurrently.

Each invocation runs under its own tool's timeout class; the batch as a
whole is bounded by the ``batch`` class when the executor runs it.  A
failing invocation never affects its siblings, and a nested
``batch_tool`` invocation is rejected for that entry only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from chatloop.config import ToolsConfig
from chatloop.tools.base import Tool, ToolParam
from chatloop.tools.runner import run_tool, tool_not_found
from chatloop.types import ErrorCode, ToolResult

if TYPE_CHECKING:
    from chatloop.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

BATCH_TOOL_NAME = "batch_tool"


def batch_payload(result: ToolResult) -> dict | None:
    """The ``batch_results`` envelope of a batch outcome, success or not."""
    for source in (result.data, result.metadata):
        if isinstance(source, dict) and isinstance(source.get("batch_results"), list):
            return source
    return None


class BatchTool(Tool):
    def __init__(self, registry: ToolRegistry, tools_config: ToolsConfig | None = None):
        self._registry = registry
        self._config = tools_config or ToolsConfig()

    @property
    def name(self) -> str:
        return BATCH_TOOL_NAME

    @property
    def description(self) -> str:
        return (
            "Execute multiple tool invocations in parallel. Use this when you need "
            "several independent pieces of information at once (for example several "
            "knowledge base lookups, or a query plus a category browse). Nested "
            "batch_tool invocations are not allowed."
        )

    @property
    def params(self) -> list[ToolParam]:
        return [
            ToolParam(
                "invocations",
                "array",
                "The tool invocations to run concurrently",
                items={
                    "type": "object",
                    "properties": {
                        "name": {"description": "Tool name"},
                        "arguments": {"description": "Tool arguments object"},
                    },
                },
            ),
        ]

    @property
    def timeout_class(self) -> str:
        return "batch"

    async def execute(self, invocations: list[dict[str, Any]]) -> ToolResult:
        if not invocations:
            return ToolResult(
                success=False,
                error="invocations must be a non-empty list",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        results = await asyncio.gather(*(self._invoke(inv) for inv in invocations))
        batch_results = [
            {"tool": inv.get("name", ""), **res.to_dict()}
            for inv, res in zip(invocations, results)
        ]
        total = len(results)
        succeeded = sum(1 for r in results if r.success)
        payload = {
            "batch_results": batch_results,
            "total_invocations": total,
            "successful_invocations": succeeded,
        }
        message = f"Executed {total} tool invocations ({succeeded} succeeded)"
        logger.info("batch_tool: %s", message)

        if succeeded == 0:
            return ToolResult(
                success=False,
                error=f"All {total} batch invocations failed",
                error_code=ErrorCode.BATCH_PARTIAL_FAILURE,
                message=message,
                metadata=payload,
            )
        return ToolResult(success=True, data=payload, message=message)

    async def _invoke(self, invocation: dict[str, Any]) -> ToolResult:
        name = invocation.get("name")
        if not isinstance(name, str) or not name:
            return ToolResult(
                success=False,
                error="invocation is missing a tool name",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        if name == BATCH_TOOL_NAME:
            return ToolResult(
                success=False,
                error="Recursive batch_tool invocations are not allowed",
                error_code=ErrorCode.RECURSIVE_BATCH,
            )
        tool = self._registry.get(name)
        if tool is None:
            return tool_not_found(name)
        arguments = invocation.get("arguments") or {}
        if not isinstance(arguments, dict):
            return ToolResult(
                success=False,
                error="arguments must be an object",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        return await run_tool(tool, arguments, self._config.timeout_for(tool.timeout_class))
