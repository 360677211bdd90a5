"""Runs a single tool invocation under its timeout, converting failures to data."""

from __future__ import annotations

import asyncio
import logging
import time

from chatloop.tools.base import Tool
from chatloop.tools.validation import ToolValidator
from chatloop.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)


def tool_not_found(name: str) -> ToolResult:
    return ToolResult(
        success=False,
        error="Tool not found",
        error_code=ErrorCode.UNKNOWN_TOOL,
        metadata={"toolName": name},
    )


async def run_tool(tool: Tool, arguments: dict | None, timeout: float) -> ToolResult:
    """
    Execute *tool* with *arguments*, bounded by *timeout* seconds.

    Never raises for tool-level problems: invalid arguments, exceptions
    thrown by the tool and timeouts all come back as a failed
    ``ToolResult``.  Cancellation propagates.
    """
    args = tool.prepare_arguments(arguments)
    ok, err = ToolValidator.validate(tool, args)
    if not ok:
        return ToolResult(
            success=False,
            error=f"Invalid arguments: {err}",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    start = time.monotonic()
    try:
        result = await asyncio.wait_for(tool.execute(**args), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Tool %s timed out after %.1fs", tool.name, timeout)
        return ToolResult(
            success=False,
            error=f"timed out after {int(timeout * 1000)}ms",
            error_code=ErrorCode.TIMEOUT,
        )
    except Exception as exc:
        logger.warning("Tool %s raised %s: %s", tool.name, type(exc).__name__, exc)
        return ToolResult(
            success=False,
            error=str(exc) or type(exc).__name__,
            error_code=ErrorCode.TOOL_EXCEPTION,
        )

    logger.info("Tool %s finished in %.0fms (success=%s)",
                tool.name, (time.monotonic() - start) * 1000, result.success)
    return result
