"""Loop-control tools: the model's explicit continue/complete signals."""

from __future__ import annotations

import logging

from chatloop.tools.base import Tool, ToolParam
from chatloop.types import ToolResult

logger = logging.getLogger(__name__)


class ContinueAgentTool(Tool):
    @property
    def name(self) -> str:
        return "continue_agent"

    @property
    def description(self) -> str:
        return "Continue the agent loop to perform more analysis or actions"

    @property
    def params(self) -> list[ToolParam]:
        return [ToolParam("reason", "string", "Why you want to continue", required=False)]

    async def execute(self, reason: str = "") -> ToolResult:
        logger.info("Agent continues: %s", reason)
        return ToolResult(
            success=True,
            data={"action": "continue", "reason": reason},
            message="Agent will continue processing",
        )


class CompleteTaskTool(Tool):
    @property
    def name(self) -> str:
        return "complete_task"

    @property
    def description(self) -> str:
        return "Signal that the task is complete and stop the agent loop"

    @property
    def params(self) -> list[ToolParam]:
        return [
            ToolParam("summary", "string", "Summary of what was accomplished"),
            ToolParam("recommendations", "string", "Any recommendations or next steps", required=False),
        ]

    async def execute(self, summary: str, recommendations: str | None = None) -> ToolResult:
        logger.info("Agent completes: %s", summary)
        data = {"action": "complete", "summary": summary}
        if recommendations:
            data["recommendations"] = recommendations
        return ToolResult(success=True, data=data, message="Task completed successfully")
