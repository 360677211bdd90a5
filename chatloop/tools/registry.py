from __future__ import annotations

import logging
import os
from typing import Iterable

from chatloop.backends.analytics import AnalyticsClient
from chatloop.backends.base import BackendError
from chatloop.backends.knowledge_base import KnowledgeBase
from chatloop.config import ChatloopConfig, LoopConfig
from chatloop.errors import ToolNotFoundError
from chatloop.tools.arithmetic import EvaluateExpressionTool
from chatloop.tools.base import Tool, ToolKind, tool_kind
from chatloop.tools.batch import BatchTool
from chatloop.tools.control import CompleteTaskTool, ContinueAgentTool
from chatloop.tools.knowledge import (
    BrowseKnowledgeBaseCategoryTool,
    GetKnowledgeBaseCategoriesTool,
    LookupKnowledgeBaseTool,
)
from chatloop.tools.sql import ExecuteSqlTool, ExecuteUserApprovedSqlTool, PrepareSqlForUserTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, loop_config: LoopConfig | None = None):
        self._tools: dict[str, Tool] = {}
        self.loop_config = loop_config or LoopConfig()

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise ToolNotFoundError(name, self.names())
        return t

    def names(self) -> list[str]:
        return sorted(self._tools)

    def list(self, names: Iterable[str] | None = None) -> list[Tool]:
        tools = list(self._tools.values())
        if names is not None:
            wanted = set(names)
            tools = [t for t in tools if t.name in wanted]
        return sorted(tools, key=lambda t: t.name)

    def filtered(self, names: Iterable[str]) -> ToolRegistry:
        """A new registry holding only *names* (unknown names are ignored)."""
        sub = ToolRegistry(self.loop_config)
        for t in self.list(names):
            sub.register(t)
        return sub

    def kind_of(self, name: str) -> ToolKind:
        return tool_kind(name, self.loop_config)

    def describe(self) -> list[dict]:
        return [{**t.describe(), "kind": self.kind_of(t.name).value} for t in self.list()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def build_registry(
    config: ChatloopConfig,
    allowed: Iterable[str] | None = None,
    *,
    analytics: AnalyticsClient | None = None,
    knowledge: KnowledgeBase | None = None,
    environ: dict[str, str] | None = None,
) -> ToolRegistry:
    """
    Build the tool registry for one request.

    Backends default to ones built from *config*; tests inject their own.
    Disabled tools are left out, and *allowed* narrows the set further.
    The batch tool dispatches against the final, filtered registry.
    """
    env = environ if environ is not None else os.environ
    if analytics is None:
        analytics = AnalyticsClient(
            url=config.analytics.url,
            api_key=env.get(config.analytics.api_key_env, ""),
            source=config.analytics.source,
            timeout=config.tools.timeout_for("sql"),
        )
    if knowledge is None:
        try:
            knowledge = KnowledgeBase.from_path(config.knowledge.path)
        except BackendError as e:
            logger.warning("Knowledge base unavailable (%s): %s", config.knowledge.path, e)

    registry = ToolRegistry(config.loop)
    candidates: list[Tool] = [
        EvaluateExpressionTool(),
        ExecuteSqlTool(analytics, default_query=config.tools.default_sql_query),
        PrepareSqlForUserTool(analytics),
        ExecuteUserApprovedSqlTool(analytics),
        LookupKnowledgeBaseTool(knowledge),
        GetKnowledgeBaseCategoriesTool(knowledge),
        BrowseKnowledgeBaseCategoryTool(knowledge),
        ContinueAgentTool(),
        CompleteTaskTool(),
        BatchTool(registry, config.tools),
    ]
    disabled = set(config.tools.disabled)
    wanted = set(allowed) if allowed is not None else None
    for tool in candidates:
        if tool.name in disabled:
            continue
        if wanted is not None and tool.name not in wanted:
            continue
        registry.register(tool)
    return registry
